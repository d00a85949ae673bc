from trackers.gainer.config import GainerTrackingConfig
from trackers.gainer.selector import GainerSelector

__all__ = [
    "GainerTrackingConfig",
    "GainerSelector",
]
