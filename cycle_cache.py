import threading
import time
from typing import Callable, Dict, Optional, Tuple

import pandas as pd

BAR_COLUMNS = ["ts", "open", "high", "low", "close", "volume"]

RAW_OHLCV: Dict[Tuple[str, str], dict] = {}
DF_CACHE: Dict[Tuple[str, str, int], pd.DataFrame] = {}
FETCHER: Optional[Callable[[str, str, int], Optional[list]]] = None
_LOCK = threading.Lock()


def clear_cycle_cache(keep_raw: bool = False) -> None:
    with _LOCK:
        if not keep_raw:
            RAW_OHLCV.clear()
        DF_CACHE.clear()


def set_raw(symbol: str, tf: str, data: list, limit: Optional[int] = None) -> None:
    with _LOCK:
        RAW_OHLCV[(symbol, tf)] = {"ts": time.time(), "data": data, "limit": limit or len(data)}
        # raw replaced; derived frames for this symbol/tf are stale
        for key in list(DF_CACHE.keys()):
            if key[0] == symbol and key[1] == tf:
                DF_CACHE.pop(key, None)


def _item(symbol: str, tf: str) -> Optional[dict]:
    with _LOCK:
        return RAW_OHLCV.get((symbol, tf))


def is_fresh(symbol: str, tf: str, ttl_sec: float) -> bool:
    item = _item(symbol, tf)
    if not item:
        return False
    ts = item.get("ts")
    if not isinstance(ts, (int, float)):
        return False
    return (time.time() - ts) <= ttl_sec


def set_fetcher(fetcher: Optional[Callable[[str, str, int], Optional[list]]]) -> None:
    global FETCHER
    FETCHER = fetcher


def get_df(symbol: str, tf: str, limit: int, ttl_sec: float = 300.0, force: bool = False) -> pd.DataFrame:
    """Bars for symbol/tf as a DataFrame; raw bars are refetched once older than ttl_sec."""
    key = (symbol, tf, limit)
    item = _item(symbol, tf)
    fresh = is_fresh(symbol, tf, ttl_sec)
    # a fresh fetch with an equal or larger limit covers this request even if short
    covered = bool(item) and int(item.get("limit") or 0) >= limit
    if not force and fresh and covered:
        with _LOCK:
            cached = DF_CACHE.get(key)
        if cached is not None:
            return cached
    raw = item.get("data") if item else None
    if force or not fresh or not covered:
        if FETCHER:
            fetched = FETCHER(symbol, tf, limit)
            if fetched:
                set_raw(symbol, tf, fetched, limit)
                raw = fetched
    if not raw:
        return pd.DataFrame(columns=BAR_COLUMNS)
    sliced = raw[-limit:] if len(raw) >= limit else raw
    df = pd.DataFrame(sliced, columns=BAR_COLUMNS)
    with _LOCK:
        DF_CACHE[key] = df
    return df
