from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from trackers.config import TrackingConfig
from trackers.errors import ConfigError


@dataclass
class HotspotTrackingConfig(TrackingConfig):
    # quote volume 24h / circulating market cap, in percent
    volume_ratio_threshold_pct: float = 100.0
    # breakout reference: highest high of the previous N completed daily bars
    high_price_days: int = 20
    min_market_cap_usd: float = 0.0
    max_market_cap_usd: Optional[float] = 50_000_000.0
    extreme_ttl_sec: float = 3600.0

    def validate(self) -> None:
        super().validate()
        if self.volume_ratio_threshold_pct <= 0:
            raise ConfigError(
                f"volume_ratio_threshold_pct must be > 0 (got {self.volume_ratio_threshold_pct})"
            )
        if self.high_price_days < 1:
            raise ConfigError(f"high_price_days must be >= 1 (got {self.high_price_days})")
        if self.min_market_cap_usd < 0:
            raise ConfigError(f"min_market_cap_usd must be >= 0 (got {self.min_market_cap_usd})")
        if self.max_market_cap_usd is not None and self.max_market_cap_usd < self.min_market_cap_usd:
            raise ConfigError(
                f"max_market_cap_usd ({self.max_market_cap_usd}) must be >= "
                f"min_market_cap_usd ({self.min_market_cap_usd})"
            )
        if self.extreme_ttl_sec < 0:
            raise ConfigError(f"extreme_ttl_sec must be >= 0 (got {self.extreme_ttl_sec})")
