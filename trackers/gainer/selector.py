from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from trackers.base import CandidateSelector, MarketSnapshot, SelectionResult, evaluate_symbols
from trackers.gainer.config import GainerTrackingConfig
from trackers.models import Candidate


def _utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


class GainerSelector(CandidateSelector):
    """Top-K contracts by gain from their N-day low."""

    name: str = "gainer"
    config_cls = GainerTrackingConfig

    def __init__(self) -> None:
        # symbol -> (computed_ts, low, days)
        self._low_ttl_cache: Dict[str, Tuple[float, float, int]] = {}
        self._lock = threading.Lock()

    def clear_cache(self) -> int:
        with self._lock:
            count = len(self._low_ttl_cache)
            self._low_ttl_cache.clear()
        return count

    def n_day_low(self, market: MarketSnapshot, symbol: str, cfg: GainerTrackingConfig) -> Optional[float]:
        days = int(cfg.n_days)
        with self._lock:
            cached = self._low_ttl_cache.get(symbol)
        if cached:
            ts, low, cached_days = cached
            if (
                cached_days == days
                and _utc_day(ts) == _utc_day(market.now)
                and (market.now - ts) < cfg.extreme_ttl_sec
            ):
                return low
        df = market.bars(symbol, days)
        if df.empty or "low" not in df:
            return None
        lows = df["low"].astype(float).tail(days)
        if lows.empty:
            return None
        low = float(lows.min())
        if low <= 0:
            return None
        with self._lock:
            self._low_ttl_cache[symbol] = (market.now, low, days)
        return low

    def _evaluate(self, market: MarketSnapshot, symbol: str, cfg: GainerTrackingConfig) -> Optional[tuple]:
        ticker = market.tickers.get(symbol)
        if ticker is None or ticker.last <= 0:
            return None
        low = self.n_day_low(market, symbol, cfg)
        if low is None:
            return None
        gain = (ticker.last - low) / low * 100.0
        market_cap = None
        supply = market.supply(symbol)
        if supply is not None and supply.circulating > 0:
            market_cap = supply.circulating * ticker.last
        return symbol, gain, low, market_cap

    def select(self, market: MarketSnapshot, config: GainerTrackingConfig) -> SelectionResult:
        rows, skipped = evaluate_symbols(
            market,
            market.tickers.keys(),
            lambda sym: self._evaluate(market, sym, config),
            config.max_workers,
        )
        rows.sort(key=lambda x: (-x[1], x[0]))
        candidates: List[Candidate] = []
        for rank, (sym, gain, low, market_cap) in enumerate(rows[: config.top_count], start=1):
            ticker = market.tickers[sym]
            extras = {
                "rank": rank,
                "n_day_low": low,
                "gain_pct": gain,
                "pct_24h": ticker.pct_24h,
                "quote_volume": ticker.quote_volume,
            }
            if market_cap is not None:
                extras["market_cap"] = market_cap
            candidates.append(
                Candidate(symbol=sym, metric=ticker.last, score=gain, ts=market.now, extras=extras)
            )
        return SelectionResult(candidates=candidates, watchlist=list(candidates), skipped=skipped)
