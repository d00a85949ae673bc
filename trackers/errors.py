class TrackerError(Exception):
    pass


class ConfigError(TrackerError):
    """Tracking configuration failed to parse or validate."""


class ScanTimeout(TrackerError):
    """A scan ran past its deadline during candidate selection."""
