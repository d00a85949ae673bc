from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

REASON_EXPIRED = "Expired"
REASON_DROPPED = "DroppedFromCandidates"
RECYCLE_REASONS = (REASON_EXPIRED, REASON_DROPPED)


def _finite(value: Any) -> float:
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"non-finite number: {value!r}")
    return out


def pullback_pct(peak: float, current: float) -> float:
    if peak <= 0:
        return 0.0
    return max(0.0, (peak - current) / peak * 100.0)


@dataclass(frozen=True)
class Candidate:
    symbol: str
    metric: float  # last price; pullback is measured on it
    score: float  # ranking/filter value (N-day gain %, volume ratio %)
    ts: float
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CacheEntry:
    symbol: str
    entry_time: float
    entry_metric: float
    peak_metric: float
    current_metric: float
    pullback_pct: float
    last_update_time: float
    last_seen_time: float
    missed_cycles: int = 0
    entry_score: float = 0.0
    score: float = 0.0
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_candidate(cls, cand: Candidate, now: float) -> "CacheEntry":
        return cls(
            symbol=cand.symbol,
            entry_time=now,
            entry_metric=cand.metric,
            peak_metric=cand.metric,
            current_metric=cand.metric,
            pullback_pct=0.0,
            last_update_time=now,
            last_seen_time=now,
            missed_cycles=0,
            entry_score=cand.score,
            score=cand.score,
            extras=dict(cand.extras),
        )

    def observe(self, metric: float, now: float) -> None:
        self.current_metric = metric
        if metric > self.peak_metric:
            self.peak_metric = metric
        self.pullback_pct = pullback_pct(self.peak_metric, self.current_metric)
        self.last_update_time = now

    def gain_from_entry_pct(self) -> float:
        if self.entry_metric <= 0:
            return 0.0
        return (self.current_metric - self.entry_metric) / self.entry_metric * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        entry = cls(
            symbol=str(data["symbol"]),
            entry_time=_finite(data["entry_time"]),
            entry_metric=_finite(data["entry_metric"]),
            peak_metric=_finite(data["peak_metric"]),
            current_metric=_finite(data["current_metric"]),
            pullback_pct=0.0,
            last_update_time=_finite(data.get("last_update_time", data["entry_time"])),
            last_seen_time=_finite(data.get("last_seen_time", data["entry_time"])),
            missed_cycles=int(_finite(data.get("missed_cycles", 0) or 0)),
            entry_score=_finite(data.get("entry_score", 0.0) or 0.0),
            score=_finite(data.get("score", 0.0) or 0.0),
            extras=dict(data.get("extras") or {}),
        )
        # peak never below what was observed
        entry.peak_metric = max(entry.peak_metric, entry.current_metric, entry.entry_metric)
        entry.pullback_pct = pullback_pct(entry.peak_metric, entry.current_metric)
        return entry


@dataclass
class RecycleEntry:
    symbol: str
    recycle_time: float
    reason: str
    last_pullback_pct: float
    entry_time: float = 0.0
    entry_metric: float = 0.0
    peak_metric: float = 0.0
    last_metric: float = 0.0
    cached_duration_sec: float = 0.0

    @classmethod
    def from_entry(cls, entry: CacheEntry, now: float, reason: str) -> "RecycleEntry":
        return cls(
            symbol=entry.symbol,
            recycle_time=now,
            reason=reason,
            last_pullback_pct=entry.pullback_pct,
            entry_time=entry.entry_time,
            entry_metric=entry.entry_metric,
            peak_metric=entry.peak_metric,
            last_metric=entry.current_metric,
            cached_duration_sec=max(0.0, now - entry.entry_time),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecycleEntry":
        reason = str(data["reason"])
        if reason not in RECYCLE_REASONS:
            raise ValueError(f"unknown recycle reason: {reason}")
        return cls(
            symbol=str(data["symbol"]),
            recycle_time=_finite(data["recycle_time"]),
            reason=reason,
            last_pullback_pct=_finite(data.get("last_pullback_pct", 0.0) or 0.0),
            entry_time=_finite(data.get("entry_time", 0.0) or 0.0),
            entry_metric=_finite(data.get("entry_metric", 0.0) or 0.0),
            peak_metric=_finite(data.get("peak_metric", 0.0) or 0.0),
            last_metric=_finite(data.get("last_metric", 0.0) or 0.0),
            cached_duration_sec=_finite(data.get("cached_duration_sec", 0.0) or 0.0),
        )


@dataclass
class Snapshot:
    instance_id: str
    selector: str
    config: Any
    cache: Dict[str, CacheEntry] = field(default_factory=dict)
    recycle: Dict[str, RecycleEntry] = field(default_factory=dict)
    saved_ts: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "selector": self.selector,
            "config": self.config.to_dict() if hasattr(self.config, "to_dict") else dict(self.config or {}),
            "cache": {sym: e.to_dict() for sym, e in self.cache.items()},
            "recycle": {sym: r.to_dict() for sym, r in self.recycle.items()},
            "saved_ts": self.saved_ts,
        }
