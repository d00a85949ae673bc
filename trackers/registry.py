from __future__ import annotations

from typing import Dict, Type

from trackers.base import CandidateSelector
from trackers.gainer.selector import GainerSelector
from trackers.hotspot.selector import HotspotSelector


_SELECTOR_REGISTRY: Dict[str, Type[CandidateSelector]] = {
    "gainer": GainerSelector,
    "hotspot": HotspotSelector,
}


def get_selector(name: str) -> CandidateSelector:
    key = (name or "").strip().lower()
    if key in _SELECTOR_REGISTRY:
        return _SELECTOR_REGISTRY[key]()
    raise KeyError(f"unknown selector: {name}")


def get_config_cls(name: str) -> type:
    key = (name or "").strip().lower()
    if key in _SELECTOR_REGISTRY:
        return _SELECTOR_REGISTRY[key].config_cls
    raise KeyError(f"unknown selector: {name}")


def list_selectors() -> Dict[str, Type[CandidateSelector]]:
    return dict(_SELECTOR_REGISTRY)
