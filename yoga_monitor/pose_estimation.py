import logging
import os
import threading
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from .config import MonitorSettings, get_settings
from .errors import EstimationError
from .models import Keypoint, Landmark, Skeleton

logger = logging.getLogger(__name__)

PROTOTXT_URL = (
    "https://raw.githubusercontent.com/CMU-Perceptual-Computing-Lab/openpose/"
    "master/models/pose/coco/pose_deploy_linevec.prototxt"
)
WEIGHTS_URL = "http://posefs1.perception.cs.cmu.edu/OpenPose/models/pose/coco/pose_iter_440000.caffemodel"

# OpenPose COCO heatmap channel for each landmark (channel 1 is the neck, unused)
OPENPOSE_CHANNELS = {
    Landmark.NOSE: 0,
    Landmark.RIGHT_SHOULDER: 2,
    Landmark.RIGHT_ELBOW: 3,
    Landmark.RIGHT_WRIST: 4,
    Landmark.LEFT_SHOULDER: 5,
    Landmark.LEFT_ELBOW: 6,
    Landmark.LEFT_WRIST: 7,
    Landmark.RIGHT_HIP: 8,
    Landmark.RIGHT_KNEE: 9,
    Landmark.RIGHT_ANKLE: 10,
    Landmark.LEFT_HIP: 11,
    Landmark.LEFT_KNEE: 12,
    Landmark.LEFT_ANKLE: 13,
    Landmark.RIGHT_EYE: 14,
    Landmark.LEFT_EYE: 15,
    Landmark.RIGHT_EAR: 16,
    Landmark.LEFT_EAR: 17,
}


class PoseEstimator(ABC):
    """Any pose model that turns an RGB frame into skeletons."""

    @abstractmethod
    def load(self) -> None:
        """Load model weights. Runs on the inference worker thread."""
        ...

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    def estimate(self, frame: np.ndarray) -> List[Skeleton]:
        """Run pose estimation on one frame. Raises EstimationError on failure."""
        ...

    def close(self) -> None:
        pass


class OpenPoseEstimator(PoseEstimator):
    """CMU OpenPose COCO model through OpenCV's DNN module."""

    def __init__(self, settings: Optional[MonitorSettings] = None):
        self.settings = settings or get_settings()
        self.model_folder = Path(self.settings.model_dir)
        self.prototxt_path = self.model_folder / "pose_deploy_linevec.prototxt"
        self.weights_path = self.model_folder / "pose_iter_440000.caffemodel"
        self.net = None
        self._ready = threading.Event()

    def load(self) -> None:
        # Download COCO model files if they don't exist
        os.makedirs(self.model_folder, exist_ok=True)
        for url, path in ((PROTOTXT_URL, self.prototxt_path), (WEIGHTS_URL, self.weights_path)):
            if not path.exists():
                logger.info("Downloading %s", url)
                urllib.request.urlretrieve(url, str(path))

        self.net = cv2.dnn.readNetFromCaffe(str(self.prototxt_path), str(self.weights_path))
        self._ready.set()
        logger.info("OpenPose model loaded from %s", self.model_folder)

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def estimate(self, frame: np.ndarray) -> List[Skeleton]:
        if self.net is None:
            raise EstimationError("pose model is not loaded")

        size = self.settings.input_size
        try:
            # Frames arrive as RGB; the Caffe model expects BGR
            blob = cv2.dnn.blobFromImage(frame, 1.0 / 255, (size, size), (0, 0, 0), swapRB=True, crop=False)
            self.net.setInput(blob)
            output = self.net.forward()
        except cv2.error as e:
            raise EstimationError(f"OpenCV DNN forward pass failed: {e}") from e

        frame_height, frame_width = frame.shape[:2]
        skeleton = self.skeleton_from_heatmaps(output, frame_width, frame_height, self.settings.heatmap_threshold)
        return [skeleton] if skeleton is not None else []

    @staticmethod
    def skeleton_from_heatmaps(
        output: np.ndarray, frame_width: int, frame_height: int, threshold: float = 0.1
    ) -> Optional[Skeleton]:
        """
        Reduce an OpenPose output blob (1, C, H, W) to a single skeleton.

        Each landmark takes the global maximum of its heatmap, scaled to frame
        pixels, with the peak probability as score. Peaks at or below
        `threshold` are kept with score 0. Returns None when nothing is found.
        """
        H = output.shape[2]
        W = output.shape[3]

        keypoints = []
        found = False
        for landmark in Landmark:
            prob_map = np.ascontiguousarray(output[0, OPENPOSE_CHANNELS[landmark], :, :], dtype=np.float32)
            _, prob, _, point = cv2.minMaxLoc(prob_map)

            # Scale the point to fit on the original image
            x = (frame_width * point[0]) / W
            y = (frame_height * point[1]) / H
            score = float(np.clip(prob, 0.0, 1.0)) if prob > threshold else 0.0
            found = found or score > 0.0
            keypoints.append(Keypoint(landmark=landmark, x=x, y=y, score=score))

        if not found:
            return None
        return Skeleton(keypoints=tuple(keypoints))

    def close(self) -> None:
        self.net = None
        self._ready.clear()
