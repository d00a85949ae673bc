from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional

from trackers.base import CandidateSelector, MarketSnapshot, SelectionResult
from trackers.cache import TrackingCache
from trackers.config import TrackingConfig
from trackers.logs import format_scan_log, format_sweep_log, log_error, log_line, tag
from trackers.models import Snapshot
from trackers.view import STATUS_ERROR, STATUS_IDLE, STATUS_RUNNING, TrackerView
from trackers.zones import classify

Subscriber = Callable[[TrackerView], None]


class TrackingEngine:
    """Scan loop for one tracking instance.

    A scan is: select candidates (no lock held, may block on the network),
    apply cache update and eviction under the cache lock, save, publish one
    immutable TrackerView. A tick that arrives while a scan is in flight is
    dropped, not queued.

    provider: get_all_tickers() -> {symbol: Ticker}, get_bars(symbol, limit) -> DataFrame
    supply:   get(symbol) -> Supply | None  (optional)
    store:    load(instance_id, selector) -> Snapshot, save(Snapshot) -> bool
    """

    def __init__(
        self,
        instance_id: str,
        selector: CandidateSelector,
        provider: Any,
        store: Any,
        config: Optional[TrackingConfig] = None,
        supply: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.instance_id = instance_id
        self.selector = selector
        self.provider = provider
        self.supply = supply
        self.store = store
        self.cache = TrackingCache()
        self._config_override = config
        self.config: TrackingConfig = config or selector.config_cls()
        self._clock = clock
        self._tag = tag(instance_id)

        self._scan_guard = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._subscribers: List[Subscriber] = []

        self._status = STATUS_IDLE
        self._last_error: Optional[str] = None
        self._scan_count = 0
        self._next_scan_ts: Optional[float] = None
        self._running = False
        self._stopped = False
        self._view = TrackerView(
            instance_id=instance_id,
            selector=selector.name,
            scan_count=0,
            last_scan_ts=None,
            next_scan_ts=None,
            status=STATUS_IDLE,
            last_error=None,
        )

    # --- lifecycle ---

    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Load saved state, validate config, scan now and then every interval.

        Raises ConfigError before anything is started when the config is invalid.
        """
        if self._running:
            return
        snapshot = self.store.load(self.instance_id, self.selector.name)
        cfg = self._config_override or snapshot.config
        cfg.validate()
        self.config = cfg
        self.cache.replace_state(snapshot.cache, snapshot.recycle)
        self._publish(self._build_view(SelectionResult(candidates=[]), scan_ts=None), notify=False)
        self._stop_event.clear()
        with self._lifecycle_lock:
            self._stopped = False
            self._ensure_executor()
        self._thread = threading.Thread(
            target=self._run_loop, name=f"tracker-{self.instance_id}", daemon=True
        )
        self._running = True
        self._thread.start()
        log_line(
            f"{self._tag} start selector={self.selector.name} interval={cfg.scan_interval_sec}s "
            f"cache={len(snapshot.cache)} recycle={len(snapshot.recycle)}",
            self.instance_id,
        )

    def stop(self) -> bool:
        """Stop ticking, let an in-flight scan finish, then save once more."""
        self._stop_event.set()
        # no tick submits once this is set; earlier submissions finish below
        with self._lifecycle_lock:
            self._stopped = True
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._running = False
        self._next_scan_ts = None
        saved = self.save()
        log_line(f"{self._tag} stopped saved={saved}", self.instance_id)
        return saved

    def update_config(self, cfg: TrackingConfig) -> None:
        cfg.validate()
        self.config = cfg
        self._config_override = cfg
        log_line(f"{self._tag} config updated interval={cfg.scan_interval_sec}s", self.instance_id)

    # --- scheduling ---

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tracker-scan-{self.instance_id}")
        return self._executor

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            interval = float(self.config.scan_interval_sec)
            self._next_scan_ts = self._clock() + interval
            if self._stop_event.wait(interval):
                break

    def tick(self) -> Optional[Future]:
        """Start a scan unless one is already running. Returns its future, or None if skipped or stopped."""
        if not self._scan_guard.acquire(blocking=False):
            log_line(f"{self._tag} scan in flight, tick skipped", self.instance_id)
            return None
        with self._lifecycle_lock:
            if self._stopped:
                self._scan_guard.release()
                log_line(f"{self._tag} stopped, tick ignored", self.instance_id)
                return None
            try:
                return self._ensure_executor().submit(self._guarded_scan)
            except RuntimeError:
                self._scan_guard.release()
                return None

    trigger_now = tick

    def _guarded_scan(self) -> bool:
        try:
            return self.scan_once()
        finally:
            self._scan_guard.release()

    # --- scan body ---

    def scan_once(self) -> bool:
        cfg = self.config
        started = time.monotonic()
        self._set_status(STATUS_RUNNING, self._last_error)
        try:
            tickers = self.provider.get_all_tickers()
            market = MarketSnapshot(
                tickers=tickers,
                now=self._clock(),
                bars_fn=self.provider.get_bars,
                supply_fn=self.supply.get if self.supply is not None else None,
                deadline=started + cfg.scan_timeout_sec if cfg.scan_timeout_sec else None,
            )
            result = self.selector.select(market, cfg)
            market.check_deadline()

            now = self._clock()
            prices = {sym: t.last for sym, t in tickers.items()}
            cycle = self.cache.run_cycle(result.candidates, now, cfg, prices=prices)
            for rec in cycle.recycled:
                log_line(format_sweep_log(self.instance_id, rec.symbol, rec.reason, rec.last_pullback_pct), self.instance_id)
            if cycle.purged:
                log_line(f"{self._tag} purged from recycle: {','.join(cycle.purged)}", self.instance_id)

            self.save()
            with self._state_lock:
                self._scan_count += 1
            self._set_status(STATUS_IDLE, None)
            view = self._build_view(result, scan_ts=now)
            self._publish(view)
            counts = view.counts()
            counts["added"] = len(cycle.update.added)
            log_line(format_scan_log(self.instance_id, view.scan_count, counts, time.monotonic() - started), self.instance_id)
            return True
        except Exception as e:
            self._set_status(STATUS_ERROR, f"{type(e).__name__}: {e}")
            log_error(f"{self._tag} scan failed: {type(e).__name__}: {e}", e)
            return False

    def save(self) -> bool:
        entries, recycle = self.cache.copy_state()
        snapshot = Snapshot(
            instance_id=self.instance_id,
            selector=self.selector.name,
            config=self.config,
            cache=entries,
            recycle=recycle,
        )
        return bool(self.store.save(snapshot))

    # --- publishing ---

    def _build_view(self, result: SelectionResult, scan_ts: Optional[float]) -> TrackerView:
        entries, recycle = self.cache.copy_state()
        cached = sorted(entries.values(), key=lambda e: (-e.pullback_pct, e.symbol))
        z1, z2 = classify(cached, self.config)
        with self._state_lock:
            scan_count = self._scan_count
        return TrackerView(
            instance_id=self.instance_id,
            selector=self.selector.name,
            scan_count=scan_count,
            last_scan_ts=scan_ts,
            next_scan_ts=self._next_scan_ts,
            status=self._status,
            last_error=self._last_error,
            candidates=tuple(result.candidates),
            watchlist=tuple(result.watchlist),
            cache=tuple(cached),
            zone1=tuple(z1),
            zone2=tuple(z2),
            recycle=tuple(sorted(recycle.values(), key=lambda r: (-r.recycle_time, r.symbol))),
        )

    def _set_status(self, status: str, last_error: Optional[str]) -> None:
        with self._state_lock:
            self._status = status
            self._last_error = last_error

    def _publish(self, view: TrackerView, notify: bool = True) -> None:
        with self._state_lock:
            self._view = view
            subscribers = list(self._subscribers)
        if not notify:
            return
        for callback in subscribers:
            try:
                callback(view)
            except Exception as e:
                log_error(f"{self._tag} subscriber failed: {type(e).__name__}: {e}", e)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._state_lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._state_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def view(self) -> TrackerView:
        """Latest published view with live status and next-scan time."""
        with self._state_lock:
            view = self._view
            status = self._status
            last_error = self._last_error
        return view.with_status(status, last_error, self._next_scan_ts)
