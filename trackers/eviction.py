from __future__ import annotations

from typing import Dict, List, Optional

from trackers.models import REASON_DROPPED, REASON_EXPIRED, CacheEntry, RecycleEntry


def sweep_expired(
    entries: Dict[str, CacheEntry],
    recycle: Dict[str, RecycleEntry],
    now: float,
    expiry_sec: float,
    grace_cycles: Optional[int] = None,
    anchor: str = "entry",
) -> List[RecycleEntry]:
    """Move expired or disappeared entries from the cache into the recycle bin.

    An entry expires once now - anchor time >= expiry_sec, where the anchor is
    its entry time ("entry") or the last cycle it was a candidate
    ("last_seen"). With grace_cycles set, an entry also leaves after that many
    consecutive cycles outside the candidate list. Expiry wins when both apply.
    """
    moved: List[RecycleEntry] = []
    for sym in sorted(entries):
        entry = entries[sym]
        start = entry.last_seen_time if anchor == "last_seen" else entry.entry_time
        expired = (now - start) >= expiry_sec
        dropped = grace_cycles is not None and entry.missed_cycles >= grace_cycles
        if not expired and not dropped:
            continue
        rec = RecycleEntry.from_entry(entry, now, REASON_EXPIRED if expired else REASON_DROPPED)
        recycle[sym] = rec
        del entries[sym]
        moved.append(rec)
    return moved


def sweep_recycled(recycle: Dict[str, RecycleEntry], now: float, retention_sec: float) -> List[str]:
    removed = [sym for sym, rec in recycle.items() if (now - rec.recycle_time) >= retention_sec]
    for sym in removed:
        del recycle[sym]
    return sorted(removed)
