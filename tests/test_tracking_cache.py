from trackers.cache import TrackingCache
from trackers.config import TrackingConfig
from trackers.models import Candidate, CacheEntry, pullback_pct
from trackers.zones import classify, zone1, zone2

T0 = 1_700_000_000.0


def _cand(symbol, metric, score=0.0, ts=T0, **extras):
    return Candidate(symbol=symbol, metric=metric, score=score, ts=ts, extras=extras)


def _cfg(**kw):
    base = dict(cache_expiry_hours=2, pullback_zone1_pct=10, pullback_zone2_pct=20)
    base.update(kw)
    return TrackingConfig(**base)


def test_pullback_pct():
    assert pullback_pct(100.0, 85.0) == 15.0
    assert pullback_pct(100.0, 120.0) == 0.0
    assert pullback_pct(0.0, 5.0) == 0.0


def test_zone_walkthrough():
    cfg = _cfg()
    cache = TrackingCache()
    res = cache.update([_cand("ABCUSDT", 100.0)], T0)
    assert res.added == ["ABCUSDT"]
    entry = cache.entries["ABCUSDT"]
    assert entry.pullback_pct == 0.0
    assert entry.peak_metric == 100.0

    cache.update([_cand("ABCUSDT", 85.0)], T0 + 600)
    assert round(entry.pullback_pct, 6) == 15.0
    z1, z2 = classify(cache.entries.values(), cfg)
    assert [e.symbol for e in z1] == ["ABCUSDT"]
    assert z2 == []

    cache.update([_cand("ABCUSDT", 75.0)], T0 + 1200)
    assert round(entry.pullback_pct, 6) == 25.0
    z1, z2 = classify(cache.entries.values(), cfg)
    assert [e.symbol for e in z1] == ["ABCUSDT"]
    assert [e.symbol for e in z2] == ["ABCUSDT"]
    assert entry.entry_metric == 100.0
    assert entry.entry_time == T0


def test_peak_is_running_max():
    cache = TrackingCache()
    for i, price in enumerate([100.0, 130.0, 110.0, 125.0]):
        cache.update([_cand("X", price)], T0 + i)
    entry = cache.entries["X"]
    assert entry.peak_metric == 130.0
    assert entry.current_metric == 125.0
    assert round(entry.pullback_pct, 6) == round((130.0 - 125.0) / 130.0 * 100.0, 6)


def test_duplicate_candidates_first_wins():
    cache = TrackingCache()
    cache.update([_cand("X", 100.0, score=5), _cand("X", 50.0, score=1)], T0)
    entry = cache.entries["X"]
    assert entry.entry_metric == 100.0
    assert entry.score == 5


def test_absent_entries_keep_metric_and_count_misses():
    cache = TrackingCache()
    cache.update([_cand("A", 100.0), _cand("B", 10.0)], T0)
    res = cache.update([_cand("A", 90.0)], T0 + 5)
    b = cache.entries["B"]
    assert res.missed == ["B"]
    assert b.missed_cycles == 1
    assert b.current_metric == 10.0
    assert b.last_update_time == T0
    assert b.last_seen_time == T0

    cache.update([_cand("A", 90.0), _cand("B", 12.0)], T0 + 10)
    assert b.missed_cycles == 0
    assert b.last_seen_time == T0 + 10


def test_absent_price_refresh_when_enabled():
    cfg = _cfg(refresh_absent_prices=True)
    cache = TrackingCache()
    cache.run_cycle([_cand("A", 100.0)], T0, cfg)
    cache.run_cycle([], T0 + 5, cfg, prices={"A": 80.0})
    entry = cache.entries["A"]
    assert entry.current_metric == 80.0
    assert round(entry.pullback_pct, 6) == 20.0

    cfg_off = _cfg()
    cache_off = TrackingCache()
    cache_off.run_cycle([_cand("A", 100.0)], T0, cfg_off)
    cache_off.run_cycle([], T0 + 5, cfg_off, prices={"A": 80.0})
    assert cache_off.entries["A"].current_metric == 100.0


def test_same_cycle_twice_is_idempotent():
    cfg = _cfg()
    cache = TrackingCache()
    cache.run_cycle([_cand("A", 100.0)], T0, cfg)
    cands = [_cand("A", 90.0), _cand("B", 5.0)]
    cache.run_cycle(cands, T0 + 60, cfg)
    first = cache.copy_state()
    cache.run_cycle(cands, T0 + 60, cfg)
    second = cache.copy_state()
    assert {k: v.to_dict() for k, v in first[0].items()} == {k: v.to_dict() for k, v in second[0].items()}
    assert first[1] == second[1]


def test_zone2_subset_of_zone1_and_order():
    cfg = _cfg()
    entries = []
    for sym, pb in (("B", 25.0), ("A", 25.0), ("C", 12.0), ("D", 3.0)):
        e = CacheEntry.from_candidate(_cand(sym, 100.0), T0)
        e.observe(100.0 - pb, T0 + 1)
        entries.append(e)
    z1 = zone1(entries, cfg)
    z2 = zone2(entries, cfg)
    assert [e.symbol for e in z1] == ["A", "B", "C"]
    assert [e.symbol for e in z2] == ["A", "B"]
    assert {e.symbol for e in z2} <= {e.symbol for e in z1}


def test_copy_state_is_detached():
    cache = TrackingCache()
    cache.update([_cand("A", 100.0)], T0)
    entries, _ = cache.copy_state()
    entries["A"].current_metric = 1.0
    assert cache.entries["A"].current_metric == 100.0
