from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from trackers.base import CandidateSelector, MarketSnapshot, SelectionResult, evaluate_symbols
from trackers.hotspot.config import HotspotTrackingConfig
from trackers.models import Candidate


def _utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


class HotspotSelector(CandidateSelector):
    """Volume-anomaly filter by quote volume / circulating market cap.

    Anomalies (ratio above threshold inside the market-cap band) go to the
    watchlist. Anomalies that also trade above their N-day high are realtime
    hotspots and are the candidates fed to the tracking cache.
    """

    name: str = "hotspot"
    config_cls = HotspotTrackingConfig

    def __init__(self) -> None:
        # symbol -> (computed_ts, high, days)
        self._high_ttl_cache: Dict[str, Tuple[float, float, int]] = {}
        self._lock = threading.Lock()

    def clear_cache(self) -> int:
        with self._lock:
            count = len(self._high_ttl_cache)
            self._high_ttl_cache.clear()
        return count

    def n_day_high(self, market: MarketSnapshot, symbol: str, cfg: HotspotTrackingConfig) -> Optional[float]:
        days = int(cfg.high_price_days)
        with self._lock:
            cached = self._high_ttl_cache.get(symbol)
        if cached:
            ts, high, cached_days = cached
            if (
                cached_days == days
                and _utc_day(ts) == _utc_day(market.now)
                and (market.now - ts) < cfg.extreme_ttl_sec
            ):
                return high
        df = market.bars(symbol, days + 1)
        if df.empty or "high" not in df or len(df) < 2:
            return None
        # last bar is today's, still forming
        highs = df["high"].astype(float).iloc[:-1].tail(days)
        if highs.empty:
            return None
        high = float(highs.max())
        if high <= 0:
            return None
        with self._lock:
            self._high_ttl_cache[symbol] = (market.now, high, days)
        return high

    def _evaluate(self, market: MarketSnapshot, symbol: str, cfg: HotspotTrackingConfig) -> Optional[tuple]:
        ticker = market.tickers.get(symbol)
        if ticker is None or ticker.last <= 0:
            return None
        supply = market.supply(symbol)
        if supply is None or supply.circulating <= 0:
            return None
        market_cap = supply.circulating * ticker.last
        if market_cap < cfg.min_market_cap_usd:
            return None
        if cfg.max_market_cap_usd is not None and market_cap > cfg.max_market_cap_usd:
            return None
        ratio = ticker.quote_volume / market_cap * 100.0
        if ratio < cfg.volume_ratio_threshold_pct:
            return None
        extras = {
            "volume_ratio_pct": ratio,
            "market_cap": market_cap,
            "total_market_cap": supply.total * ticker.last if supply.total > 0 else 0.0,
            "circulating_rate_pct": supply.circulating / supply.total * 100.0 if supply.total > 0 else 0.0,
            "pct_24h": ticker.pct_24h,
            "quote_volume": ticker.quote_volume,
        }
        anomaly = Candidate(symbol=symbol, metric=ticker.last, score=ratio, ts=market.now, extras=extras)
        high = self.n_day_high(market, symbol, cfg)
        if high is None or ticker.last <= high:
            return anomaly, None
        hot_extras = dict(extras)
        hot_extras["n_day_high"] = high
        hot_extras["pct_from_n_day_high"] = (ticker.last - high) / high * 100.0
        hotspot = Candidate(symbol=symbol, metric=ticker.last, score=ratio, ts=market.now, extras=hot_extras)
        return anomaly, hotspot

    def select(self, market: MarketSnapshot, config: HotspotTrackingConfig) -> SelectionResult:
        rows, skipped = evaluate_symbols(
            market,
            market.tickers.keys(),
            lambda sym: self._evaluate(market, sym, config),
            config.max_workers,
        )
        anomalies: List[Candidate] = []
        hotspots: List[Candidate] = []
        for anomaly, hotspot in rows:
            anomalies.append(anomaly)
            if hotspot is not None:
                hotspots.append(hotspot)
        anomalies.sort(key=lambda c: (-c.score, c.symbol))
        hotspots.sort(key=lambda c: (-c.score, c.symbol))
        return SelectionResult(candidates=hotspots, watchlist=anomalies, skipped=skipped)
