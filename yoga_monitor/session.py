import logging
from datetime import datetime
from typing import List, Optional

from .config import MonitorSettings, get_settings
from .errors import InvalidStateError
from .metrics import build_report
from .models import WAITING_POSE, Classification, LogEntry, Session, SessionReport

logger = logging.getLogger(__name__)


class SessionController:
    """
    Owns the single in-memory session and guards its lifecycle.

    One writer only: log_pose is expected to be called from the control loop.
    """

    def __init__(self, settings: Optional[MonitorSettings] = None):
        self.settings = settings or get_settings()
        self._session: Optional[Session] = None
        self.current_pose = Classification(pose_name=WAITING_POSE, confidence=0.0)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._session.entries) if self._session else []

    @property
    def frame_count(self) -> int:
        return self._session.frame_count if self._session else 0

    def start_session(self, practitioner_id: str, now: Optional[datetime] = None) -> Session:
        if self.is_active:
            raise InvalidStateError("a session is already active")

        self._session = Session(practitioner_id=practitioner_id, start_time=now or datetime.now())
        self.current_pose = Classification(pose_name=WAITING_POSE, confidence=0.0)
        logger.info("Session started for %s", practitioner_id)
        return self._session

    def end_session(self, now: Optional[datetime] = None) -> Session:
        if not self.is_active:
            raise InvalidStateError("no session is active")

        session = self._session
        # The window covers every logged entry
        floor = session.entries[-1].timestamp if session.entries else session.start_time
        session.end_time = max(now or datetime.now(), floor)
        session.active = False
        logger.info(
            "Session ended for %s after %d frames", session.practitioner_id, session.frame_count
        )
        return session

    def log_pose(self, pose_name: str, confidence: float, now: Optional[datetime] = None) -> LogEntry:
        if not self.is_active:
            raise InvalidStateError("cannot log a pose without an active session")

        session = self._session
        timestamp = now or datetime.now()
        # Keep the log non-decreasing in time and inside the session window
        floor = session.entries[-1].timestamp if session.entries else session.start_time
        if timestamp < floor:
            timestamp = floor

        entry = LogEntry(pose_name=pose_name, confidence=confidence, timestamp=timestamp)
        session.entries.append(entry)
        session.frame_count += 1
        self.current_pose = Classification(pose_name=pose_name, confidence=confidence)
        return entry

    def reset(self) -> None:
        """Forget the last session and its log."""
        if self.is_active:
            raise InvalidStateError("end the active session before resetting")
        self._session = None
        self.current_pose = Classification(pose_name=WAITING_POSE, confidence=0.0)

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        if self._session is None:
            return 0.0
        end = self._session.end_time or now or datetime.now()
        return max(0.0, (end - self._session.start_time).total_seconds())

    def report(self, now: Optional[datetime] = None) -> SessionReport:
        if self._session is None:
            raise InvalidStateError("no session has been started")
        return build_report(
            self._session,
            now=now,
            frame_rate=self.settings.assumed_frame_rate,
            top_n=self.settings.top_pose_count,
        )
