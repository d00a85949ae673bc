from __future__ import annotations

from dataclasses import dataclass

from trackers.config import TrackingConfig
from trackers.errors import ConfigError


@dataclass
class GainerTrackingConfig(TrackingConfig):
    n_days: int = 30  # gain measured from the lowest low of the last n_days daily bars
    top_count: int = 30
    extreme_ttl_sec: float = 3600.0

    def validate(self) -> None:
        super().validate()
        if self.n_days < 1:
            raise ConfigError(f"n_days must be >= 1 (got {self.n_days})")
        if self.top_count < 1:
            raise ConfigError(f"top_count must be >= 1 (got {self.top_count})")
        if self.extreme_ttl_sec < 0:
            raise ConfigError(f"extreme_ttl_sec must be >= 0 (got {self.extreme_ttl_sec})")
