from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from trackers.errors import ConfigError

# Recycle bin keeps removed entries for 3 days before they are dropped for good.
DEFAULT_RECYCLE_RETENTION_HOURS = 72.0
# None: entries leave the cache only through expiry, never for dropping off the list.
DEFAULT_DISAPPEARANCE_GRACE_CYCLES: Optional[int] = None
# Per-scan fan-out for per-symbol candidate computation.
DEFAULT_MAX_WORKERS = 20

EXPIRY_ANCHORS = ("entry", "last_seen")

_ENV_KEYS = {
    "TRACKER_SCAN_INTERVAL_SEC": "scan_interval_sec",
    "TRACKER_CACHE_EXPIRY_HOURS": "cache_expiry_hours",
    "TRACKER_ZONE1_PCT": "pullback_zone1_pct",
    "TRACKER_ZONE2_PCT": "pullback_zone2_pct",
    "TRACKER_RECYCLE_HOURS": "recycle_retention_hours",
    "TRACKER_GRACE_CYCLES": "disappearance_grace_cycles",
    "TRACKER_SCAN_TIMEOUT_SEC": "scan_timeout_sec",
}

C = TypeVar("C", bound="TrackingConfig")


@dataclass
class TrackingConfig:
    scan_interval_sec: float = 5.0
    cache_expiry_hours: float = 240.0
    pullback_zone1_pct: float = 10.0
    pullback_zone2_pct: float = 20.0
    recycle_retention_hours: float = DEFAULT_RECYCLE_RETENTION_HOURS
    disappearance_grace_cycles: Optional[int] = DEFAULT_DISAPPEARANCE_GRACE_CYCLES
    # "entry": expire cache_expiry_hours after entry.
    # "last_seen": countdown restarts whenever the symbol is a candidate again.
    expiry_anchor: str = "entry"
    scan_timeout_sec: Optional[float] = None
    refresh_absent_prices: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    @property
    def expiry_sec(self) -> float:
        return float(self.cache_expiry_hours) * 3600.0

    @property
    def retention_sec(self) -> float:
        return float(self.recycle_retention_hours) * 3600.0

    def validate(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, float) and not math.isfinite(value):
                raise ConfigError(f"{f.name} must be a finite number (got {value})")
        if self.scan_interval_sec <= 0:
            raise ConfigError(f"scan_interval_sec must be > 0 (got {self.scan_interval_sec})")
        if self.cache_expiry_hours <= 0:
            raise ConfigError(f"cache_expiry_hours must be > 0 (got {self.cache_expiry_hours})")
        if self.recycle_retention_hours <= 0:
            raise ConfigError(f"recycle_retention_hours must be > 0 (got {self.recycle_retention_hours})")
        if self.pullback_zone1_pct <= 0:
            raise ConfigError(f"pullback_zone1_pct must be > 0 (got {self.pullback_zone1_pct})")
        if self.pullback_zone2_pct < self.pullback_zone1_pct:
            raise ConfigError(
                f"pullback_zone2_pct ({self.pullback_zone2_pct}) must be >= "
                f"pullback_zone1_pct ({self.pullback_zone1_pct})"
            )
        if self.disappearance_grace_cycles is not None and self.disappearance_grace_cycles < 1:
            raise ConfigError(
                f"disappearance_grace_cycles must be >= 1 or unset (got {self.disappearance_grace_cycles})"
            )
        if self.expiry_anchor not in EXPIRY_ANCHORS:
            raise ConfigError(f"expiry_anchor must be one of {EXPIRY_ANCHORS} (got {self.expiry_anchor!r})")
        if self.scan_timeout_sec is not None and self.scan_timeout_sec <= 0:
            raise ConfigError(f"scan_timeout_sec must be > 0 or unset (got {self.scan_timeout_sec})")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1 (got {self.max_workers})")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls: Type[C], data: Optional[Mapping[str, Any]]) -> C:
        """Build a config from a mapping; unknown keys are ignored, numbers may be strings."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"config must be a mapping (got {type(data).__name__})")
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            kwargs[f.name] = _coerce(
                f.name, data[f.name], cls._field_default(f.name), "Optional" in str(f.type)
            )
        return cls(**kwargs)

    @classmethod
    def _field_default(cls, name: str) -> Any:
        return getattr(cls(), name)


def _coerce(name: str, value: Any, default: Any, optional: bool = False) -> Any:
    if optional and (value is None or (isinstance(value, str) and value.strip().lower() in ("", "none", "off"))):
        return None
    if name == "disappearance_grace_cycles":
        return _parse_number(name, value, int)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{name}: expected a boolean (got {value!r})")
    if isinstance(default, int):
        return _parse_number(name, value, int)
    if isinstance(default, float):
        return _parse_number(name, value, float)
    if default is None and value is not None:
        return _parse_number(name, value, float)
    return str(value) if value is not None else default


def _parse_number(name: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ConfigError(f"{name}: expected a number (got {value!r})")
    try:
        as_float = float(value)
        if not math.isfinite(as_float):
            raise ValueError(value)
        if kind is int:
            if as_float != int(as_float):
                raise ValueError(value)
            return int(as_float)
        return as_float
    except (TypeError, ValueError, OverflowError):
        raise ConfigError(f"{name}: expected a number (got {value!r})") from None


def config_from_env(config_cls: Type[C], base: Optional[C] = None, env: Optional[Mapping[str, str]] = None) -> C:
    env = os.environ if env is None else env
    merged = (base or config_cls()).to_dict()
    for key, attr in _ENV_KEYS.items():
        value = env.get(key)
        if value is None or str(value).strip() == "":
            continue
        merged[attr] = value
    return config_cls.from_dict(merged)
