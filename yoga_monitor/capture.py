import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def frame_snapshot(frame: np.ndarray) -> np.ndarray:
    """Copy a frame and mark the copy read-only before it crosses to the worker."""
    snapshot = np.array(frame, copy=True)
    snapshot.setflags(write=False)
    return snapshot


class FrameSource(ABC):
    """A live source of RGB frames."""

    @abstractmethod
    def frame_ready(self) -> bool:
        """True when a decodable current frame is available."""
        ...

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        ...

    def release(self) -> None:
        pass


class VideoCaptureSource(FrameSource):
    """Camera index or video file read through cv2.VideoCapture."""

    def __init__(self, source: Union[int, str] = 0, resize_to: Optional[Tuple[int, int]] = None):
        """
        source: camera index or path to a video file
        resize_to: (width, height) or None to keep original size
        """
        self.source = source
        self.resize_to = resize_to
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            logger.warning("Cannot open video source %r", source)

    def frame_ready(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def read(self) -> Optional[np.ndarray]:
        if not self.frame_ready():
            return None
        ret, frame_bgr = self.cap.read()
        if not ret:
            return None

        if self.resize_to is not None:
            w, h = self.resize_to
            frame_bgr = cv2.resize(frame_bgr, (w, h))

        return cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
