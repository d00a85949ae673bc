import json
import os

from state_store import StateStore, load_snapshot, save_snapshot, snapshot_path
from trackers.gainer import GainerTrackingConfig
from trackers.models import REASON_EXPIRED, Candidate, CacheEntry, RecycleEntry, Snapshot

T0 = 1_700_000_000.0


def _snapshot():
    entry = CacheEntry.from_candidate(Candidate(symbol="A/USDT:USDT", metric=100.0, score=42.0, ts=T0, extras={"rank": 1}), T0)
    entry.observe(80.0, T0 + 60)
    rec = RecycleEntry(symbol="B/USDT:USDT", recycle_time=T0, reason=REASON_EXPIRED, last_pullback_pct=12.5)
    return Snapshot(
        instance_id="default",
        selector="gainer",
        config=GainerTrackingConfig(top_count=12, disappearance_grace_cycles=4),
        cache={entry.symbol: entry},
        recycle={rec.symbol: rec},
    )


def test_missing_snapshot_gives_defaults(tmp_path):
    snap = StateStore(str(tmp_path)).load("nothing", "gainer")
    assert snap.cache == {}
    assert snap.recycle == {}
    assert snap.config == GainerTrackingConfig()


def test_corrupted_snapshot_gives_defaults(tmp_path):
    path = snapshot_path("default", "hotspot", str(tmp_path))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("{not json")
    snap = load_snapshot("default", "hotspot", str(tmp_path))
    assert snap.cache == {} and snap.recycle == {}

    with open(path, "w", encoding="utf-8") as f:
        json.dump(["a", "list"], f)
    snap = load_snapshot("default", "hotspot", str(tmp_path))
    assert snap.cache == {} and snap.recycle == {}


def test_save_then_load(tmp_path):
    store = StateStore(str(tmp_path))
    original = _snapshot()
    assert store.save(original) is True
    loaded = store.load("default", "gainer")
    assert loaded.config == original.config
    assert {k: v.to_dict() for k, v in loaded.cache.items()} == {k: v.to_dict() for k, v in original.cache.items()}
    assert loaded.recycle == original.recycle
    assert loaded.saved_ts is not None
    assert [p for p in os.listdir(tmp_path) if p.startswith(".tmp-")] == []


def test_malformed_entries_skipped_and_bad_config_replaced(tmp_path):
    save_snapshot(_snapshot(), str(tmp_path))
    path = snapshot_path("default", "gainer", str(tmp_path))
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data["cache"]["BROKEN"] = {"symbol": "BROKEN"}
    data["recycle"]["BAD"] = dict(data["recycle"]["B/USDT:USDT"], symbol="BAD", reason="Sold")
    data["config"]["pullback_zone2_pct"] = 1
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)

    snap = load_snapshot("default", "gainer", str(tmp_path))
    assert list(snap.cache) == ["A/USDT:USDT"]
    assert list(snap.recycle) == ["B/USDT:USDT"]
    assert snap.config == GainerTrackingConfig()


def test_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    assert save_snapshot(_snapshot(), str(blocker / "sub")) is False


def test_instance_ids_are_separate_files(tmp_path):
    a = snapshot_path("win 1", "gainer", str(tmp_path))
    b = snapshot_path("win 2", "gainer", str(tmp_path))
    assert a != b
    assert os.path.basename(a) == "gainer_tracking_win_1.json"


def test_non_finite_values_do_not_break_load(tmp_path):
    save_snapshot(_snapshot(), str(tmp_path))
    path = snapshot_path("default", "gainer", str(tmp_path))
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data["cache"]["A/USDT:USDT"]["missed_cycles"] = float("inf")
    data["recycle"]["B/USDT:USDT"]["recycle_time"] = float("nan")
    data["config"]["n_days"] = float("inf")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)

    snap = load_snapshot("default", "gainer", str(tmp_path))
    assert snap.cache == {}
    assert snap.recycle == {}
    assert snap.config == GainerTrackingConfig()


def test_huge_number_text_does_not_break_load(tmp_path):
    path = snapshot_path("default", "gainer", str(tmp_path))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write('{"config": {"top_count": 1e999}, "cache": {"X": {"symbol": "X", "entry_time": 1, '
                '"entry_metric": 1, "peak_metric": 1, "current_metric": 1, "missed_cycles": 1e999}}}')
    snap = load_snapshot("default", "gainer", str(tmp_path))
    assert snap.cache == {}
    assert snap.config == GainerTrackingConfig()
