import json
import os
import re
import tempfile
import time
from typing import Any, Dict, Optional

from trackers.errors import ConfigError
from trackers.logs import log_error, log_line
from trackers.models import CacheEntry, RecycleEntry, Snapshot
from trackers.registry import get_config_cls

DEFAULT_DATA_DIR = os.path.join("data", "tracking")


def _data_dir(data_dir: Optional[str] = None) -> str:
    if data_dir:
        return data_dir
    value = os.getenv("TRACKER_DATA_DIR")
    if value is None or str(value).strip() == "":
        return DEFAULT_DATA_DIR
    return str(value).strip()


def _safe_id(instance_id: str) -> str:
    clean = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(instance_id or "").strip())
    return clean or "default"


def snapshot_path(instance_id: str, selector: str, data_dir: Optional[str] = None) -> str:
    return os.path.join(_data_dir(data_dir), f"{_safe_id(selector)}_tracking_{_safe_id(instance_id)}.json")


def _default_snapshot(instance_id: str, selector: str) -> Snapshot:
    return Snapshot(instance_id=instance_id, selector=selector, config=get_config_cls(selector)())


def _load_config(selector: str, raw: Any, tag: str) -> Any:
    config_cls = get_config_cls(selector)
    try:
        cfg = config_cls.from_dict(raw if isinstance(raw, dict) else None)
        cfg.validate()
        return cfg
    except ConfigError as e:
        log_line(f"{tag} stored config invalid, using defaults: {e}")
        return config_cls()


def _load_entries(raw: Any, kind: type, tag: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not isinstance(raw, dict):
        return out
    for sym, item in raw.items():
        try:
            entry = kind.from_dict(item)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            log_line(f"{tag} skip malformed {kind.__name__} {sym}: {e}")
            continue
        out[entry.symbol] = entry
    return out


def load_snapshot(instance_id: str, selector: str, data_dir: Optional[str] = None) -> Snapshot:
    """Load the saved snapshot for instance_id, or a default one. Never raises."""
    tag = f"[state:{instance_id}]"
    path = snapshot_path(instance_id, selector, data_dir)
    if not os.path.exists(path):
        log_line(f"{tag} no saved state at {path}")
        return _default_snapshot(instance_id, selector)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except Exception as e:
        log_error(f"{tag} unreadable state file {path}: {e}")
        return _default_snapshot(instance_id, selector)
    if not isinstance(data, dict):
        log_error(f"{tag} malformed state file {path}: top level is {type(data).__name__}")
        return _default_snapshot(instance_id, selector)
    snapshot = Snapshot(
        instance_id=instance_id,
        selector=selector,
        config=_load_config(selector, data.get("config"), tag),
        cache=_load_entries(data.get("cache"), CacheEntry, tag),
        recycle=_load_entries(data.get("recycle"), RecycleEntry, tag),
        saved_ts=data.get("saved_ts") if isinstance(data.get("saved_ts"), (int, float)) else None,
    )
    log_line(f"{tag} loaded cache={len(snapshot.cache)} recycle={len(snapshot.recycle)}")
    return snapshot


def save_snapshot(snapshot: Snapshot, data_dir: Optional[str] = None) -> bool:
    """Atomically overwrite the instance's state file. Failures are logged, not raised."""
    tag = f"[state:{snapshot.instance_id}]"
    path = snapshot_path(snapshot.instance_id, snapshot.selector, data_dir)
    tmp_path = None
    try:
        snapshot.saved_ts = time.time()
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)
        folder = os.path.dirname(path) or "."
        os.makedirs(folder, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=folder)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        return True
    except Exception as e:
        log_error(f"{tag} save failed {path}: {e}", e)
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
        return False


class StateStore:
    def __init__(self, data_dir: Optional[str] = None) -> None:
        self.data_dir = data_dir

    def load(self, instance_id: str, selector: str) -> Snapshot:
        return load_snapshot(instance_id, selector, self.data_dir)

    def save(self, snapshot: Snapshot) -> bool:
        return save_snapshot(snapshot, self.data_dir)
