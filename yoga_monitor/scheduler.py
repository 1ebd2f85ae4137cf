"""
Rate-limited inference scheduling.

A control loop ticks at display cadence (~60Hz) and dispatches at most one
estimation request every `min_dispatch_interval_s`, with at most one request
in flight: while the backend is busy, ticks skip dispatch. Estimation runs on an
InferenceWorker thread; frames go in and skeletons come back through queues
only, and results are handed to the consumer on the control loop thread.
"""
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from .capture import FrameSource, frame_snapshot
from .config import MonitorSettings, get_settings
from .errors import EstimationError
from .models import Skeleton
from .pose_estimation import PoseEstimator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceRequest:
    seq: int
    generation: int
    frame: np.ndarray
    dispatched_at: float


@dataclass(frozen=True)
class InferenceResult:
    seq: int
    generation: int
    skeletons: List[Skeleton] = field(default_factory=list)
    error: Optional[EstimationError] = None


class InferenceWorker:
    """Runs the estimator on its own thread. Every request yields exactly one result."""

    def __init__(self, estimator: PoseEstimator, results: "queue.Queue[InferenceResult]"):
        self.estimator = estimator
        self._requests: "queue.Queue[Optional[InferenceRequest]]" = queue.Queue()
        self._results = results
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="InferenceWorker", daemon=True)
        self._thread.start()

    def submit(self, request: InferenceRequest) -> None:
        self._requests.put_nowait(request)

    def _load(self) -> None:
        if self.estimator.is_ready():
            return
        try:
            self.estimator.load()
        except Exception:
            # Readiness stays False, so the scheduler keeps skipping dispatch
            logger.exception("Pose model failed to load")

    def _estimate(self, request: InferenceRequest) -> InferenceResult:
        try:
            skeletons = self.estimator.estimate(request.frame)
        except EstimationError as e:
            return InferenceResult(request.seq, request.generation, error=e)
        except Exception as e:
            error = EstimationError(f"{type(e).__name__}: {e}")
            error.__cause__ = e
            return InferenceResult(request.seq, request.generation, error=error)
        return InferenceResult(request.seq, request.generation, skeletons=list(skeletons))

    def _run(self) -> None:
        self._load()
        while True:
            request = self._requests.get()
            try:
                if request is None:
                    return
                self._results.put(self._estimate(request))
            finally:
                self._requests.task_done()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted request has produced its result."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._requests.all_tasks_done:
            while self._requests.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._requests.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self._requests.put(None)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Inference worker still busy after %.1fs; leaving it to finish", timeout or 0.0)
        self._thread = None


class InferenceScheduler:
    def __init__(
        self,
        source: FrameSource,
        estimator: PoseEstimator,
        on_skeleton: Callable[[Skeleton], None],
        is_active: Callable[[], bool] = lambda: True,
        settings: Optional[MonitorSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.estimator = estimator
        self.on_skeleton = on_skeleton
        self.is_active = is_active
        self.settings = settings or get_settings()
        self.clock = clock

        self.running = False
        self.last_dispatch_time: Optional[float] = None
        self.dispatched = 0
        self.delivered = 0
        self.dropped = 0

        self._generation = 0
        self._seq = 0
        self._in_flight = False
        self._results: "queue.Queue[InferenceResult]" = queue.Queue()
        self._worker: Optional[InferenceWorker] = None

    @property
    def worker(self) -> Optional[InferenceWorker]:
        return self._worker

    @property
    def in_flight(self) -> bool:
        """True from dispatch until the request's result is drained."""
        return self._in_flight

    def start(self) -> None:
        if self.running:
            return
        self._worker = InferenceWorker(self.estimator, self._results)
        self._worker.start()
        self.last_dispatch_time = None
        self._in_flight = False
        self.running = True
        logger.info("Inference scheduler started (generation %d)", self._generation)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop dispatching, invalidate in-flight requests and release the worker."""
        if not self.running:
            return
        self.running = False
        self._generation += 1
        self._in_flight = False
        self._drain(deliver=False)
        if self._worker is not None:
            self._worker.close(self.settings.worker_join_timeout_s if timeout is None else timeout)
            self._worker = None
        logger.info(
            "Inference scheduler stopped: %d dispatched, %d delivered, %d dropped",
            self.dispatched, self.delivered, self.dropped,
        )

    def ready(self) -> bool:
        return self.source.frame_ready() and self.estimator.is_ready() and self.is_active()

    def tick(self, now: Optional[float] = None) -> bool:
        """
        One control loop iteration. Hands over any results that have arrived,
        then dispatches a new request if the interval has elapsed, the previous
        request has come back, and the source, backend and session are all
        ready. Never waits on inference.
        """
        self.deliver_results()
        if not self.running:
            return False
        if self._in_flight:
            logger.debug("Request %d still in flight; skipping dispatch", self._seq)
            return False

        now = self.clock() if now is None else now
        if (
            self.last_dispatch_time is not None
            and now - self.last_dispatch_time < self.settings.min_dispatch_interval_s
        ):
            return False
        if not self.ready():
            return False

        frame = self.source.read()
        if frame is None:
            logger.debug("Frame source reported ready but returned no frame")
            return False

        self._seq += 1
        self._worker.submit(InferenceRequest(self._seq, self._generation, frame_snapshot(frame), now))
        self._in_flight = True
        self.last_dispatch_time = now
        self.dispatched += 1
        return True

    def deliver_results(self) -> int:
        """Pass arrived skeletons to the consumer in arrival order. Returns how many were delivered."""
        return self._drain(deliver=True)

    def _drain(self, deliver: bool) -> int:
        delivered = 0
        while True:
            try:
                result = self._results.get_nowait()
            except queue.Empty:
                return delivered

            if result.generation == self._generation:
                self._in_flight = False
            if not deliver or result.generation != self._generation or not self.is_active():
                logger.debug("Dropping late inference result %d", result.seq)
                self.dropped += 1
                continue
            if result.error is not None:
                logger.warning("Pose estimation failed for request %d: %s", result.seq, result.error)
                continue

            for skeleton in result.skeletons:
                self.on_skeleton(skeleton)
                delivered += 1
                self.delivered += 1

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight requests to finish. Mainly for offline runs and tests."""
        if self._worker is None:
            return True
        return self._worker.wait_idle(timeout)

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Blocking control loop at `tick_hz` until stopped."""
        self.start()
        stop_event = stop_event or threading.Event()
        period = 1.0 / self.settings.tick_hz
        try:
            while self.running and not stop_event.is_set():
                t0 = time.monotonic()
                self.tick()
                # sleep to maintain ~tick_hz
                remain = period - (time.monotonic() - t0)
                if remain > 0:
                    stop_event.wait(remain)
        finally:
            self.stop()
