from __future__ import annotations

import os
import traceback
from datetime import datetime, timezone
from typing import Dict, Optional

DEFAULT_LOG_DIR = os.path.join("logs", "tracker")


def _log_dir() -> str:
    value = os.getenv("TRACKER_LOG_DIR")
    if value is None or str(value).strip() == "":
        return DEFAULT_LOG_DIR
    return str(value).strip()


def _append(path: str, line: str) -> None:
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")
    except Exception:
        pass


def _now_str() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def log_line(line: str, instance_id: Optional[str] = None) -> None:
    """Print a tagged line and append it to the daily tracker log."""
    print(line)
    date_tag = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d")
    name = f"{instance_id or 'tracker'}-{date_tag}.log"
    _append(os.path.join(_log_dir(), name), f"[{_now_str()}] {line}")


def log_error(msg: str, exc: Optional[BaseException] = None) -> None:
    text = msg
    if exc is not None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        text = f"{msg}\n{tb}"
    print(msg)
    _append(os.path.join(_log_dir(), "error.log"), f"[{_now_str()}] {text}")


def tag(instance_id: str) -> str:
    return f"[tracker:{instance_id}]"


def format_scan_log(
    instance_id: str,
    scan: int,
    counts: Dict[str, int],
    elapsed: float,
) -> str:
    return (
        f"{tag(instance_id)} scan={scan} "
        f"candidates={counts.get('candidates', 0)} "
        f"watch={counts.get('watchlist', 0)} "
        f"added={counts.get('added', 0)} "
        f"cache={counts.get('cache', 0)} "
        f"z1={counts.get('zone1', 0)} z2={counts.get('zone2', 0)} "
        f"recycle={counts.get('recycle', 0)} "
        f"elapsed={elapsed:.2f}s"
    )


def format_sweep_log(instance_id: str, symbol: str, reason: str, pullback: float) -> str:
    return f"{tag(instance_id)} recycle sym={symbol} reason={reason} pullback={pullback:.2f}%"
