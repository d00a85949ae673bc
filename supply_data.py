import json
import os
import threading
from typing import Dict, Optional

from trackers.base import Supply
from trackers.logs import log_error, log_line

DEFAULT_SUPPLY_FILE = os.path.join("data", "supply_data.json")


def _supply_path(path: Optional[str] = None) -> str:
    if path:
        return path
    value = os.getenv("TRACKER_SUPPLY_FILE")
    if value is None or str(value).strip() == "":
        return DEFAULT_SUPPLY_FILE
    return str(value).strip()


def exchange_id(symbol: str) -> str:
    """BTC/USDT:USDT -> BTCUSDT; already-plain ids pass through upper-cased."""
    base = str(symbol or "").split(":", 1)[0]
    return base.replace("/", "").upper()


def _parse_contracts(data) -> Dict[str, Supply]:
    rows = data.get("Contracts") if isinstance(data, dict) else data
    out: Dict[str, Supply] = {}
    if not isinstance(rows, list):
        return out
    for row in rows:
        if not isinstance(row, dict):
            continue
        sym = row.get("Symbol") or row.get("symbol")
        if not sym:
            continue
        try:
            circulating = float(row.get("CirculatingSupply", row.get("circulating", 0)) or 0)
            total = float(row.get("TotalSupply", row.get("total", 0)) or 0)
        except (TypeError, ValueError):
            continue
        if circulating <= 0:
            continue
        key = exchange_id(sym)
        out[key] = Supply(symbol=key, circulating=circulating, total=total)
    return out


class SupplyDataProvider:
    """Circulating/total supply per contract, read from a JSON reference file.

    File shape: {"Contracts": [{"Symbol": "BTCUSDT", "CirculatingSupply": ..., "TotalSupply": ...}]}.
    The file is re-read when its mtime changes.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = _supply_path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Supply] = {}
        self._mtime: Optional[float] = None

    def reload(self) -> int:
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            with self._lock:
                if self._mtime is None:
                    log_line(f"[supply] no supply file at {self.path}")
                    self._mtime = -1.0
            return 0
        with self._lock:
            if self._mtime == mtime:
                return len(self._data)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log_error(f"[supply] unreadable supply file {self.path}: {e}")
            return 0
        parsed = _parse_contracts(data)
        with self._lock:
            self._data = parsed
            self._mtime = mtime
        log_line(f"[supply] loaded {len(parsed)} contracts from {self.path}")
        return len(parsed)

    def get(self, symbol: str) -> Optional[Supply]:
        self.reload()
        with self._lock:
            return self._data.get(exchange_id(symbol))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
