"""
Yoga Pose Monitor
-----------------
Real-time yoga pose classification from 2D skeletal keypoints, with
per-session pose duration and confidence analytics.
"""

from .config import MonitorSettings, get_settings
from .errors import EstimationError, InvalidStateError, YogaMonitorError
from .models import (
    Classification,
    Keypoint,
    Landmark,
    LogEntry,
    PoseStat,
    Session,
    SessionMetrics,
    SessionReport,
    Skeleton,
)
from .pose_classifier import PoseClassifier, angle_degrees, classify_pose, extract_joint_angles
from .pose_estimation import OpenPoseEstimator, PoseEstimator
from .capture import FrameSource, VideoCaptureSource
from .scheduler import InferenceScheduler
from .session import SessionController
from .metrics import build_report, compute_metrics, export_report_json
from .monitor import PoseMonitor

__version__ = "0.1.0"
