from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from trackers.models import Candidate, CacheEntry, RecycleEntry

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class TrackerView:
    """Read-only result of one completed scan, shared with every observer."""

    instance_id: str
    selector: str
    scan_count: int
    last_scan_ts: Optional[float]
    next_scan_ts: Optional[float]
    status: str
    last_error: Optional[str]
    candidates: Tuple[Candidate, ...] = ()
    watchlist: Tuple[Candidate, ...] = ()
    cache: Tuple[CacheEntry, ...] = ()
    zone1: Tuple[CacheEntry, ...] = ()
    zone2: Tuple[CacheEntry, ...] = ()
    recycle: Tuple[RecycleEntry, ...] = ()

    def seconds_to_next_scan(self, now: float) -> Optional[float]:
        if self.next_scan_ts is None:
            return None
        return max(0.0, self.next_scan_ts - now)

    def counts(self) -> Dict[str, int]:
        return {
            "candidates": len(self.candidates),
            "watchlist": len(self.watchlist),
            "cache": len(self.cache),
            "zone1": len(self.zone1),
            "zone2": len(self.zone2),
            "recycle": len(self.recycle),
        }

    def with_status(self, status: str, last_error: Optional[str], next_scan_ts: Optional[float]) -> "TrackerView":
        return TrackerView(
            instance_id=self.instance_id,
            selector=self.selector,
            scan_count=self.scan_count,
            last_scan_ts=self.last_scan_ts,
            next_scan_ts=next_scan_ts,
            status=status,
            last_error=last_error,
            candidates=self.candidates,
            watchlist=self.watchlist,
            cache=self.cache,
            zone1=self.zone1,
            zone2=self.zone2,
            recycle=self.recycle,
        )

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "instance_id": self.instance_id,
            "selector": self.selector,
            "scan_count": self.scan_count,
            "last_scan_ts": self.last_scan_ts,
            "next_scan_ts": self.next_scan_ts,
            "status": self.status,
            "last_error": self.last_error,
            "counts": self.counts(),
            "candidates": [asdict(c) for c in self.candidates],
            "watchlist": [asdict(c) for c in self.watchlist],
            "cache": [e.to_dict() for e in self.cache],
            "zone1": [e.symbol for e in self.zone1],
            "zone2": [e.symbol for e in self.zone2],
            "recycle": [r.to_dict() for r in self.recycle],
        }
        if now is not None:
            payload["seconds_to_next_scan"] = self.seconds_to_next_scan(now)
        return payload
