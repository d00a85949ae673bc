import copy
import threading
import time

import pandas as pd
import pytest

from trackers.base import CandidateSelector, SelectionResult, Ticker, evaluate_symbols
from trackers.config import TrackingConfig
from trackers.engine import TrackingEngine
from trackers.errors import ConfigError
from trackers.models import Candidate, CacheEntry, Snapshot
from trackers.view import STATUS_ERROR, STATUS_IDLE

T0 = 1_700_000_000.0


class FakeProvider:
    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.fail = None
        self.gate = None
        self.calls = 0

    def get_all_tickers(self):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail is not None:
            raise self.fail
        return {s: Ticker(symbol=s, last=p, quote_volume=0.0, pct_24h=0.0) for s, p in self.prices.items()}

    def get_bars(self, symbol, limit):
        return pd.DataFrame()


class FakeStore:
    def __init__(self, snapshot=None):
        self.snapshot = snapshot
        self.saved = []

    def load(self, instance_id, selector):
        if self.snapshot is not None:
            return self.snapshot
        return Snapshot(instance_id=instance_id, selector=selector, config=TrackingConfig())

    def save(self, snapshot):
        self.saved.append(copy.deepcopy(snapshot))
        return True


class PriceSelector(CandidateSelector):
    """Every ticker is a candidate, ranked by price."""

    name = "prices"
    config_cls = TrackingConfig

    def select(self, market, config):
        cands = [
            Candidate(symbol=t.symbol, metric=t.last, score=t.last, ts=market.now)
            for t in market.tickers.values()
        ]
        cands.sort(key=lambda c: (-c.score, c.symbol))
        return SelectionResult(candidates=cands, watchlist=list(cands))


class SlowSelector(PriceSelector):
    def select(self, market, config):
        evaluate_symbols(market, market.tickers.keys(), lambda s: time.sleep(0.5), 4)
        return super().select(market, config)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def _engine(provider, store=None, config=None, selector=None, clock=None):
    return TrackingEngine(
        instance_id="t1",
        selector=selector or PriceSelector(),
        provider=provider,
        store=store or FakeStore(),
        config=config or TrackingConfig(scan_interval_sec=3600, pullback_zone1_pct=10, pullback_zone2_pct=20),
        clock=clock or Clock(),
    )


def test_scan_updates_cache_saves_and_publishes():
    provider = FakeProvider({"A": 100.0})
    store = FakeStore()
    clock = Clock()
    eng = _engine(provider, store, clock=clock)
    views = []
    eng.subscribe(views.append)

    assert eng.scan_once()
    provider.prices["A"] = 75.0
    clock.now = T0 + 60
    assert eng.scan_once()

    view = eng.view()
    assert view.scan_count == 2
    assert view.status == STATUS_IDLE
    assert view.last_scan_ts == T0 + 60
    assert [e.symbol for e in view.zone1] == ["A"]
    assert [e.symbol for e in view.zone2] == ["A"]
    assert len(views) == 2
    assert len(store.saved) == 2
    assert store.saved[-1].cache["A"].peak_metric == 100.0
    assert store.saved[-1].cache["A"].current_metric == 75.0


def test_published_view_is_not_mutated_by_later_scans():
    provider = FakeProvider({"A": 100.0})
    clock = Clock()
    eng = _engine(provider, clock=clock)
    eng.scan_once()
    first = eng.view()
    provider.prices["A"] = 50.0
    clock.now = T0 + 5
    eng.scan_once()
    assert first.cache[0].current_metric == 100.0
    assert eng.view().cache[0].current_metric == 50.0


def test_tick_skipped_while_scan_in_flight():
    provider = FakeProvider({"A": 100.0})
    provider.gate = threading.Event()
    clock = Clock()
    eng = _engine(provider, clock=clock)

    fut = eng.tick()
    assert fut is not None
    while provider.calls == 0:
        time.sleep(0.01)
    assert eng.tick() is None
    assert eng.trigger_now() is None
    provider.gate.set()
    assert fut.result(timeout=5) is True

    entry = eng.view().cache[0]
    assert entry.last_update_time == T0
    assert provider.calls == 1
    assert eng.view().scan_count == 1
    eng.stop()


def test_scan_failure_sets_error_and_next_scan_recovers():
    provider = FakeProvider({"A": 100.0})
    provider.fail = ConnectionError("exchange down")
    store = FakeStore()
    eng = _engine(provider, store)

    assert eng.scan_once() is False
    view = eng.view()
    assert view.status == STATUS_ERROR
    assert "exchange down" in view.last_error
    assert store.saved == []

    provider.fail = None
    assert eng.scan_once() is True
    view = eng.view()
    assert view.status == STATUS_IDLE
    assert view.last_error is None
    assert view.scan_count == 1


def test_subscriber_errors_do_not_break_scan():
    eng = _engine(FakeProvider({"A": 1.0}))

    def boom(view):
        raise ValueError("bad subscriber")

    got = []
    eng.subscribe(boom)
    unsubscribe = eng.subscribe(got.append)
    assert eng.scan_once()
    unsubscribe()
    assert eng.scan_once()
    assert len(got) == 1


def test_scan_timeout_leaves_cache_untouched():
    cfg = TrackingConfig(scan_interval_sec=3600, scan_timeout_sec=0.05)
    store = FakeStore()
    eng = _engine(FakeProvider({"A": 1.0}), store, config=cfg, selector=SlowSelector())
    assert eng.scan_once() is False
    view = eng.view()
    assert view.status == STATUS_ERROR
    assert "ScanTimeout" in view.last_error
    assert eng.cache.counts()["cache"] == 0
    assert store.saved == []


def test_start_loads_snapshot_and_stop_saves():
    entry = CacheEntry.from_candidate(Candidate(symbol="OLD", metric=10.0, score=0.0, ts=T0), T0)
    snap = Snapshot(instance_id="t1", selector="prices", config=TrackingConfig(scan_interval_sec=3600), cache={"OLD": entry})
    store = FakeStore(snap)
    provider = FakeProvider({"A": 100.0})
    eng = TrackingEngine("t1", PriceSelector(), provider, store, clock=Clock(T0 + 10))
    eng.start()
    assert eng.is_running()
    deadline = time.time() + 5
    while eng.view().scan_count < 1 and time.time() < deadline:
        time.sleep(0.01)
    assert eng.view().scan_count == 1
    assert eng.config.scan_interval_sec == 3600
    saved_before = len(store.saved)

    assert eng.stop() is True
    assert not eng.is_running()
    assert len(store.saved) == saved_before + 1
    assert set(store.saved[-1].cache) == {"OLD", "A"}


def test_invalid_config_blocks_start():
    eng = _engine(FakeProvider(), config=TrackingConfig(pullback_zone1_pct=30, pullback_zone2_pct=10))
    with pytest.raises(ConfigError):
        eng.start()
    assert not eng.is_running()


def test_update_config_validates():
    eng = _engine(FakeProvider())
    with pytest.raises(ConfigError):
        eng.update_config(TrackingConfig(scan_interval_sec=-1))
    eng.update_config(TrackingConfig(scan_interval_sec=30))
    assert eng.config.scan_interval_sec == 30


def test_stop_waits_for_in_flight_scan_then_saves():
    provider = FakeProvider({"A": 100.0})
    provider.gate = threading.Event()
    store = FakeStore()
    eng = _engine(provider, store)
    fut = eng.tick()
    while provider.calls == 0:
        time.sleep(0.01)

    stopped = threading.Event()
    result = {}

    def _stop():
        result["saved"] = eng.stop()
        stopped.set()

    t = threading.Thread(target=_stop)
    t.start()
    assert not stopped.wait(0.2)
    provider.gate.set()
    t.join(5)

    assert stopped.is_set()
    assert result["saved"] is True
    assert fut.done() and fut.result() is True
    # scan save, then the final save from stop
    assert len(store.saved) == 2
    assert set(store.saved[-1].cache) == {"A"}


def test_tick_after_stop_is_ignored():
    provider = FakeProvider({"A": 100.0})
    store = FakeStore()
    eng = _engine(provider, store)
    eng.stop()
    saves = len(store.saved)
    assert eng.tick() is None
    assert eng.trigger_now() is None
    assert provider.calls == 0
    assert len(store.saved) == saves


def test_published_view_status_is_idle():
    eng = _engine(FakeProvider({"A": 1.0}))
    got = []
    eng.subscribe(got.append)
    eng.scan_once()
    assert got[0].status == STATUS_IDLE
    assert got[0].last_error is None
