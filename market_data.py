import time
from typing import Any, Dict, List, Optional

import ccxt
import pandas as pd

import cycle_cache
from env_loader import load_env
from trackers.base import Ticker
from trackers.logs import log_line

DAILY_TF = "1d"
BARS_TTL_SEC = 300.0


def init_exchange() -> ccxt.Exchange:
    load_env()
    exchange = ccxt.binance(
        {
            "enableRateLimit": True,
            "options": {"defaultType": "swap"},
        }
    )
    return exchange


def wait_with_backoff(secs: float) -> None:
    time.sleep(secs)


def is_usdt_perp(market: Dict[str, Any]) -> bool:
    return bool(
        market.get("swap")
        and market.get("linear")
        and market.get("settle") == "USDT"
        and market.get("active", True)
    )


def fetch_ohlcv(exchange: ccxt.Exchange, symbol: str, timeframe: str, limit: int) -> List[list]:
    """Raw [ts, open, high, low, close, volume] rows, oldest first. Today's open bar is kept."""
    candles = None
    backoff = 1.0
    for _ in range(3):
        try:
            candles = exchange.fetch_ohlcv(symbol, timeframe, limit=limit)
            break
        except (ccxt.NetworkError, ccxt.RequestTimeout) as e:
            log_line(f"[market] fetch_ohlcv retry {symbol} {timeframe}: {e}")
            wait_with_backoff(backoff)
            backoff = min(backoff * 2, 8.0)
        except Exception as e:
            log_line(f"[market] fetch_ohlcv failed {symbol} {timeframe}: {e}")
            break
    if not candles:
        return []
    out = []
    for c in candles:
        try:
            out.append([int(c[0]), float(c[1]), float(c[2]), float(c[3]), float(c[4]), float(c[5])])
        except (TypeError, ValueError, IndexError):
            continue
    return out


def _to_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


class MarketDataProvider:
    """Binance USDT-M perpetual universe: one ticker sweep per scan plus cached daily bars."""

    def __init__(self, exchange: Optional[ccxt.Exchange] = None, bars_ttl_sec: float = BARS_TTL_SEC) -> None:
        self.exchange = exchange or init_exchange()
        self.bars_ttl_sec = float(bars_ttl_sec)
        self._symbols: Optional[List[str]] = None
        cycle_cache.set_fetcher(self._fetch_raw)

    def load_markets(self) -> Dict[str, Any]:
        for i in range(3):
            try:
                return self.exchange.load_markets()
            except (ccxt.NetworkError, ccxt.RequestTimeout) as e:
                log_line(f"[market] load_markets failed attempt {i + 1}: {e}")
                wait_with_backoff(3)
        raise RuntimeError("load_markets failed after retries")

    def symbols(self, refresh: bool = False) -> List[str]:
        if self._symbols is None or refresh:
            markets = self.load_markets()
            self._symbols = sorted({m["symbol"] for m in markets.values() if is_usdt_perp(m)})
        return list(self._symbols)

    def get_all_tickers(self) -> Dict[str, Ticker]:
        universe = set(self.symbols())
        raw = self.exchange.fetch_tickers()
        tickers: Dict[str, Ticker] = {}
        for symbol, t in (raw or {}).items():
            if symbol not in universe or not isinstance(t, dict):
                continue
            last = _to_float(t.get("last"))
            if last is None or last <= 0:
                continue
            tickers[symbol] = Ticker(
                symbol=symbol,
                last=last,
                quote_volume=_to_float(t.get("quoteVolume")) or 0.0,
                pct_24h=_to_float(t.get("percentage")) or 0.0,
            )
        return tickers

    def _fetch_raw(self, symbol: str, timeframe: str, limit: int) -> List[list]:
        return fetch_ohlcv(self.exchange, symbol, timeframe, limit)

    def get_bars(self, symbol: str, limit: int) -> pd.DataFrame:
        return cycle_cache.get_df(symbol, DAILY_TF, int(limit), ttl_sec=self.bars_ttl_sec)
