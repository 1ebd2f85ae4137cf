from datetime import datetime
from enum import IntEnum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_POSE = "Unknown"
WAITING_POSE = "Waiting..."
VISIBILITY_THRESHOLD = 0.3


class Landmark(IntEnum):
    """The 17 COCO keypoints, in MoveNet output order."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


class Keypoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    landmark: Landmark
    x: float  # pixels, origin top-left
    y: float  # pixels, increasing downward
    score: float = Field(ge=0.0, le=1.0)

    def is_visible(self, threshold: float = VISIBILITY_THRESHOLD) -> bool:
        return self.score > threshold


class Skeleton(BaseModel):
    """One person's 17 keypoints for a single frame."""

    model_config = ConfigDict(frozen=True)

    keypoints: Tuple[Keypoint, ...]

    @field_validator("keypoints")
    @classmethod
    def _check_order(cls, keypoints: Tuple[Keypoint, ...]) -> Tuple[Keypoint, ...]:
        if len(keypoints) != len(Landmark):
            raise ValueError(f"expected {len(Landmark)} keypoints, got {len(keypoints)}")
        for idx, kp in enumerate(keypoints):
            if kp.landmark != idx:
                raise ValueError(f"keypoint {idx} is {kp.landmark.name}, expected {Landmark(idx).name}")
        return keypoints

    def __getitem__(self, landmark: Landmark) -> Keypoint:
        return self.keypoints[int(landmark)]

    def visible(self, landmark: Landmark, threshold: float = VISIBILITY_THRESHOLD) -> Optional[Keypoint]:
        """Return the keypoint if it was detected with enough confidence, else None."""
        kp = self.keypoints[int(landmark)]
        return kp if kp.is_visible(threshold) else None

    @classmethod
    def from_mapping(
        cls, points: Mapping[Union[Landmark, str], Sequence[float]]
    ) -> "Skeleton":
        """
        Build a skeleton from {landmark: (x, y, score)}.
        Landmarks may be given as enum members or names ("left_hip").
        Missing landmarks get a zero-score keypoint at the origin.
        """
        by_landmark: Dict[Landmark, Sequence[float]] = {}
        for key, value in points.items():
            lm = key if isinstance(key, Landmark) else Landmark[str(key).upper()]
            by_landmark[lm] = value

        keypoints = []
        for lm in Landmark:
            x, y, score = by_landmark.get(lm, (0.0, 0.0, 0.0))
            keypoints.append(Keypoint(landmark=lm, x=x, y=y, score=score))
        return cls(keypoints=tuple(keypoints))


class JointAngles(BaseModel):
    # None when any of the three landmarks is not visible
    left_elbow: Optional[float] = None
    right_elbow: Optional[float] = None
    left_shoulder: Optional[float] = None
    right_shoulder: Optional[float] = None
    left_hip: Optional[float] = None
    right_hip: Optional[float] = None
    left_knee: Optional[float] = None
    right_knee: Optional[float] = None


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    pose_name: str
    confidence: float = Field(ge=0.0, le=1.0)

    @classmethod
    def unknown(cls) -> "Classification":
        return cls(pose_name=UNKNOWN_POSE, confidence=0.0)

    @property
    def is_unknown(self) -> bool:
        return self.pose_name == UNKNOWN_POSE


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    pose_name: str
    confidence: float
    timestamp: datetime


class Session(BaseModel):
    practitioner_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    entries: List[LogEntry] = Field(default_factory=list)
    frame_count: int = 0
    active: bool = True


class PoseStat(BaseModel):
    pose_name: str
    frame_count: int
    estimated_seconds: float
    avg_confidence: float


class TopPose(PoseStat):
    longest_hold: float
    feedback: str


class Narrative(BaseModel):
    strength: str
    growth: str
    advice: str


class SessionMetrics(BaseModel):
    total_frames: int
    avg_confidence: float
    pose_durations: List[PoseStat] = Field(default_factory=list)
    top_poses: List[TopPose] = Field(default_factory=list)
    narrative: Narrative


class SessionReport(BaseModel):
    """Plain record handed to the PDF/HTML renderers."""

    practitioner_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0
    entries: List[LogEntry] = Field(default_factory=list)
    metrics: Optional[SessionMetrics] = None
