from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from trackers.config import TrackingConfig
from trackers.engine import Subscriber, TrackingEngine
from trackers.logs import log_line
from trackers.registry import get_selector
from trackers.view import TrackerView


class TrackerClient:
    """Handle held by one window/observer on a shared engine."""

    def __init__(self, hub: "TrackerHub", engine: TrackingEngine) -> None:
        self._hub = hub
        self._engine = engine
        self._unsubscribers: List[Callable[[], None]] = []
        self._closed = False

    @property
    def instance_id(self) -> str:
        return self._engine.instance_id

    def view(self) -> TrackerView:
        return self._engine.view()

    def subscribe(self, callback: Subscriber) -> None:
        if self._closed:
            raise RuntimeError(f"client for {self.instance_id} is detached")
        self._unsubscribers.append(self._engine.subscribe(callback))

    def trigger_now(self):
        # detached: the engine may already be stopped or owned by a new attach
        if self._closed:
            return None
        return self._engine.trigger_now()

    def detach(self) -> None:
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._hub._release(self._engine.instance_id)


class TrackerHub:
    """Owns at most one running engine per instance id.

    Clients attach and detach; the engine starts on the first attach and is
    stopped (final save included) when the last client detaches, so only one
    writer ever persists an instance.
    """

    def __init__(
        self,
        provider: Any,
        store: Any,
        supply: Any = None,
        engine_factory: Optional[Callable[..., TrackingEngine]] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.supply = supply
        self._engine_factory = engine_factory or TrackingEngine
        self._lock = threading.Lock()
        self._engines: Dict[str, TrackingEngine] = {}
        self._refs: Dict[str, int] = {}

    def attach(
        self,
        instance_id: str,
        selector: str,
        config: Optional[TrackingConfig] = None,
    ) -> TrackerClient:
        with self._lock:
            engine = self._engines.get(instance_id)
            if engine is None:
                engine = self._engine_factory(
                    instance_id=instance_id,
                    selector=get_selector(selector),
                    provider=self.provider,
                    store=self.store,
                    config=config,
                    supply=self.supply,
                )
                engine.start()
                self._engines[instance_id] = engine
                self._refs[instance_id] = 0
            elif engine.selector.name != selector:
                raise ValueError(
                    f"instance {instance_id} already runs selector {engine.selector.name}, not {selector}"
                )
            elif config is not None:
                engine.update_config(config)
            self._refs[instance_id] += 1
            refs = self._refs[instance_id]
        log_line(f"[hub] attach {instance_id} refs={refs}")
        return TrackerClient(self, engine)

    def _release(self, instance_id: str) -> None:
        engine = None
        with self._lock:
            refs = self._refs.get(instance_id, 0) - 1
            if refs > 0:
                self._refs[instance_id] = refs
            else:
                self._refs.pop(instance_id, None)
                engine = self._engines.pop(instance_id, None)
        log_line(f"[hub] detach {instance_id} refs={max(refs, 0)}")
        if engine is not None:
            engine.stop()

    def get(self, instance_id: str) -> Optional[TrackingEngine]:
        with self._lock:
            return self._engines.get(instance_id)

    def instances(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._refs)

    def shutdown(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
            self._refs.clear()
        for engine in engines:
            engine.stop()
