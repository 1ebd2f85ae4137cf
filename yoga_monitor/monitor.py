import logging
from datetime import datetime
from typing import Callable, Optional

from .capture import FrameSource
from .config import MonitorSettings, get_settings
from .models import Classification, Skeleton, SessionReport
from .pose_classifier import PoseClassifier
from .pose_estimation import PoseEstimator
from .scheduler import InferenceScheduler
from .session import SessionController

logger = logging.getLogger(__name__)


class PoseMonitor:
    """
    Live pipeline: frame source -> scheduler -> estimator -> classifier -> session log.

    `clock` paces dispatch (monotonic seconds); `wall_clock` stamps the session
    window and every log entry, so both come from the same source.

    Usage:
        with PoseMonitor(VideoCaptureSource(0), OpenPoseEstimator()) as monitor:
            monitor.start("asha")
            ...  # call monitor.tick() from the display loop
            monitor.stop()
            report = monitor.report()
    """

    def __init__(
        self,
        source: FrameSource,
        estimator: PoseEstimator,
        settings: Optional[MonitorSettings] = None,
        classifier: Optional[PoseClassifier] = None,
        clock: Optional[Callable[[], float]] = None,
        wall_clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.source = source
        self.estimator = estimator
        self.classifier = classifier or PoseClassifier(visibility_threshold=self.settings.visibility_threshold)
        self.session = SessionController(self.settings)
        self.wall_clock = wall_clock

        scheduler_kwargs = {"clock": clock} if clock is not None else {}
        self.scheduler = InferenceScheduler(
            source,
            estimator,
            on_skeleton=self.handle_skeleton,
            is_active=lambda: self.session.is_active,
            settings=self.settings,
            **scheduler_kwargs,
        )

    @property
    def current_pose(self) -> Classification:
        return self.session.current_pose

    def start(self, practitioner_id: str, now: Optional[datetime] = None) -> None:
        self.session.start_session(practitioner_id, now or self.wall_clock())
        self.scheduler.start()

    def stop(self, now: Optional[datetime] = None) -> None:
        # Close the session first so nothing arriving from here on is logged
        try:
            if self.session.is_active:
                self.session.end_session(now or self.wall_clock())
        finally:
            self.scheduler.stop()

    def tick(self, now: Optional[float] = None) -> bool:
        return self.scheduler.tick(now)

    def handle_skeleton(self, skeleton: Skeleton) -> Optional[Classification]:
        """Classify one skeleton and log it if the session is still open."""
        if not self.session.is_active:
            logger.debug("Session closed; discarding late skeleton")
            return None
        classification = self.classifier.classify(skeleton)
        self.session.log_pose(classification.pose_name, classification.confidence, self.wall_clock())
        return classification

    def report(self, now: Optional[datetime] = None) -> SessionReport:
        return self.session.report(now or self.wall_clock())

    def close(self) -> None:
        try:
            self.stop()
        finally:
            self.estimator.close()
            self.source.release()

    def __enter__(self) -> "PoseMonitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
