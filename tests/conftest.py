import pytest


@pytest.fixture(autouse=True)
def _tracker_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("TRACKER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("TRACKER_DATA_DIR", str(tmp_path / "data"))
    for key in (
        "TRACKER_SCAN_INTERVAL_SEC",
        "TRACKER_CACHE_EXPIRY_HOURS",
        "TRACKER_ZONE1_PCT",
        "TRACKER_ZONE2_PCT",
        "TRACKER_RECYCLE_HOURS",
        "TRACKER_GRACE_CYCLES",
        "TRACKER_SCAN_TIMEOUT_SEC",
    ):
        monkeypatch.delenv(key, raising=False)
