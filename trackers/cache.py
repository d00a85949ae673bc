from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from trackers.config import TrackingConfig
from trackers.eviction import sweep_expired, sweep_recycled
from trackers.models import Candidate, CacheEntry, RecycleEntry


@dataclass
class UpdateResult:
    added: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    missed: List[str] = field(default_factory=list)


@dataclass
class CycleResult:
    update: UpdateResult
    recycled: List[RecycleEntry]
    purged: List[str]


class TrackingCache:
    """Monitored entries plus the recycle bin, guarded by one lock.

    update() and the sweeps do not lock on their own; run_cycle() applies a
    whole cycle under a single acquisition. Nothing under the lock does I/O.
    """

    def __init__(
        self,
        entries: Optional[Mapping[str, CacheEntry]] = None,
        recycle: Optional[Mapping[str, RecycleEntry]] = None,
    ) -> None:
        self.entries: Dict[str, CacheEntry] = dict(entries or {})
        self.recycle: Dict[str, RecycleEntry] = dict(recycle or {})
        self.lock = threading.Lock()

    def update(
        self,
        candidates: Iterable[Candidate],
        now: float,
        prices: Optional[Mapping[str, float]] = None,
    ) -> UpdateResult:
        result = UpdateResult()
        seen: Dict[str, Candidate] = {}
        for cand in candidates:
            # first occurrence wins (candidates arrive best-ranked first)
            seen.setdefault(cand.symbol, cand)
        for sym, cand in seen.items():
            entry = self.entries.get(sym)
            if entry is None:
                self.entries[sym] = CacheEntry.from_candidate(cand, now)
                result.added.append(sym)
                continue
            entry.observe(cand.metric, now)
            entry.score = cand.score
            entry.extras = dict(cand.extras)
            entry.missed_cycles = 0
            entry.last_seen_time = now
            result.refreshed.append(sym)
        for sym, entry in self.entries.items():
            if sym in seen:
                continue
            entry.missed_cycles += 1
            if prices:
                price = prices.get(sym)
                if price is not None and price > 0:
                    entry.observe(float(price), now)
            result.missed.append(sym)
        return result

    def sweep(self, now: float, cfg: TrackingConfig) -> Tuple[List[RecycleEntry], List[str]]:
        recycled = sweep_expired(
            self.entries,
            self.recycle,
            now,
            cfg.expiry_sec,
            grace_cycles=cfg.disappearance_grace_cycles,
            anchor=cfg.expiry_anchor,
        )
        purged = sweep_recycled(self.recycle, now, cfg.retention_sec)
        return recycled, purged

    def run_cycle(
        self,
        candidates: Iterable[Candidate],
        now: float,
        cfg: TrackingConfig,
        prices: Optional[Mapping[str, float]] = None,
    ) -> CycleResult:
        candidates = list(candidates)
        with self.lock:
            update = self.update(candidates, now, prices=prices if cfg.refresh_absent_prices else None)
            recycled, purged = self.sweep(now, cfg)
        return CycleResult(update=update, recycled=recycled, purged=purged)

    def copy_state(self) -> Tuple[Dict[str, CacheEntry], Dict[str, RecycleEntry]]:
        with self.lock:
            return copy.deepcopy(self.entries), copy.deepcopy(self.recycle)

    def replace_state(
        self,
        entries: Mapping[str, CacheEntry],
        recycle: Mapping[str, RecycleEntry],
    ) -> None:
        with self.lock:
            self.entries = dict(entries)
            self.recycle = dict(recycle)

    def counts(self) -> Dict[str, int]:
        with self.lock:
            return {"cache": len(self.entries), "recycle": len(self.recycle)}
