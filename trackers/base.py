from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd

from trackers.config import TrackingConfig
from trackers.errors import ScanTimeout
from trackers.models import Candidate


@dataclass(frozen=True)
class Ticker:
    symbol: str
    last: float
    quote_volume: float
    pct_24h: float


@dataclass(frozen=True)
class Supply:
    symbol: str
    circulating: float
    total: float = 0.0


@dataclass
class MarketSnapshot:
    """Everything a selector may read during one scan."""

    tickers: Dict[str, Ticker]
    now: float
    bars_fn: Optional[Callable[[str, int], pd.DataFrame]] = None
    supply_fn: Optional[Callable[[str], Optional[Supply]]] = None
    deadline: Optional[float] = None

    def bars(self, symbol: str, limit: int) -> pd.DataFrame:
        if self.bars_fn is None:
            return pd.DataFrame()
        df = self.bars_fn(symbol, limit)
        if df is None:
            return pd.DataFrame()
        return df

    def supply(self, symbol: str) -> Optional[Supply]:
        if self.supply_fn is None:
            return None
        return self.supply_fn(symbol)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        left = self.remaining()
        if left is not None and left <= 0:
            raise ScanTimeout("scan deadline exceeded during candidate selection")


@dataclass
class SelectionResult:
    # candidates feed the tracking cache; watchlist is the broader display list
    candidates: List[Candidate]
    watchlist: List[Candidate] = field(default_factory=list)
    skipped: int = 0


class CandidateSelector:
    name: str = "base"
    config_cls: type = TrackingConfig

    def select(self, market: MarketSnapshot, config: TrackingConfig) -> SelectionResult:
        return SelectionResult(candidates=[])


def evaluate_symbols(
    market: MarketSnapshot,
    symbols: Iterable[str],
    fn: Callable[[str], Any],
    max_workers: int,
) -> tuple:
    """Run fn per symbol on a bounded pool.

    Returns (results, skipped). A symbol whose fn raises or returns None is
    skipped. Raises ScanTimeout once the market deadline passes.
    """
    symbols = list(symbols)
    if not symbols:
        return [], 0
    results: List[Any] = []
    skipped = 0
    workers = max(1, min(int(max_workers or 1), len(symbols)))
    ex = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tracker-select")
    try:
        pending = {ex.submit(fn, sym) for sym in symbols}
        while pending:
            market.check_deadline()
            done, pending = wait(pending, timeout=market.remaining(), return_when=FIRST_COMPLETED)
            for fut in done:
                try:
                    res = fut.result()
                except Exception:
                    skipped += 1
                    continue
                if res is None:
                    skipped += 1
                    continue
                results.append(res)
    except ScanTimeout:
        for fut in pending:
            fut.cancel()
        raise
    finally:
        ex.shutdown(wait=False)
    return results, skipped
