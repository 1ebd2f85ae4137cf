class YogaMonitorError(Exception):
    """Base class for errors raised by the monitor."""


class InvalidStateError(YogaMonitorError):
    """Session lifecycle misuse: start while active, log or end while inactive."""


class EstimationError(YogaMonitorError):
    """The pose estimation backend failed on a frame."""
