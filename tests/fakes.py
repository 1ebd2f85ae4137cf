import threading
from typing import List, Optional

import numpy as np

from yoga_monitor.capture import FrameSource
from yoga_monitor.errors import EstimationError
from yoga_monitor.models import Skeleton
from yoga_monitor.pose_estimation import PoseEstimator


class FakeSource(FrameSource):
    def __init__(self, ready: bool = True):
        self.ready = ready
        self.reads = 0
        self.released = False
        self.frame = np.zeros((48, 64, 3), dtype=np.uint8)

    def frame_ready(self) -> bool:
        return self.ready

    def read(self) -> Optional[np.ndarray]:
        self.reads += 1
        self.frame[0, 0, 0] = self.reads % 256
        return self.frame

    def release(self) -> None:
        self.released = True


class FakeEstimator(PoseEstimator):
    """Returns a fixed skeleton. `gate` holds every estimate until it is set."""

    def __init__(
        self,
        skeleton: Optional[Skeleton] = None,
        ready: bool = True,
        ready_after_load: bool = True,
        fail: bool = False,
        load_error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
    ):
        self.skeleton = skeleton
        self._ready = threading.Event()
        if ready:
            self._ready.set()
        self.ready_after_load = ready_after_load
        self.fail = fail
        self.load_error = load_error
        self.gate = gate
        self.frames: List[np.ndarray] = []
        self.closed = False

    def load(self) -> None:
        if self.load_error is not None:
            raise self.load_error
        if self.ready_after_load:
            self._ready.set()

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def estimate(self, frame: np.ndarray) -> List[Skeleton]:
        if self.gate is not None:
            self.gate.wait(5)
        self.frames.append(frame)
        if self.fail:
            raise EstimationError("backend exploded")
        return [self.skeleton] if self.skeleton is not None else []

    def close(self) -> None:
        self.closed = True
