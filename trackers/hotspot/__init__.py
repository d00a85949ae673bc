from trackers.hotspot.config import HotspotTrackingConfig
from trackers.hotspot.selector import HotspotSelector

__all__ = [
    "HotspotTrackingConfig",
    "HotspotSelector",
]
