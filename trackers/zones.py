from __future__ import annotations

from typing import Iterable, List, Tuple

from trackers.config import TrackingConfig
from trackers.models import CacheEntry


def _by_pullback(entries: Iterable[CacheEntry], threshold: float) -> List[CacheEntry]:
    out = [e for e in entries if e.pullback_pct >= threshold]
    out.sort(key=lambda e: (-e.pullback_pct, e.symbol))
    return out


def zone1(entries: Iterable[CacheEntry], cfg: TrackingConfig) -> List[CacheEntry]:
    return _by_pullback(entries, cfg.pullback_zone1_pct)


def zone2(entries: Iterable[CacheEntry], cfg: TrackingConfig) -> List[CacheEntry]:
    return _by_pullback(entries, cfg.pullback_zone2_pct)


def classify(entries: Iterable[CacheEntry], cfg: TrackingConfig) -> Tuple[List[CacheEntry], List[CacheEntry]]:
    entries = list(entries)
    return zone1(entries, cfg), zone2(entries, cfg)
