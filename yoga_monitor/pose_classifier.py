import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from .models import (
    VISIBILITY_THRESHOLD,
    Classification,
    JointAngles,
    Keypoint,
    Landmark,
    Skeleton,
)

logger = logging.getLogger(__name__)

Point = Union[Keypoint, Sequence[float]]


def _xy(point: Point) -> Tuple[float, float]:
    if isinstance(point, Keypoint):
        return point.x, point.y
    return float(point[0]), float(point[1])


def angle_degrees(a: Optional[Point], b: Optional[Point], c: Optional[Point]) -> float:
    """
    Return angle ABC (vertex at b) in degrees, in [0, 180].

    A missing point yields 0.0 instead of an error, so a 0 next to a
    low-score landmark means "unknown", not a fully closed joint.
    """
    if a is None or b is None or c is None:
        return 0.0
    ax, ay = _xy(a)
    bx, by = _xy(b)
    cx, cy = _xy(c)
    radians = np.arctan2(cy - by, cx - bx) - np.arctan2(ay - by, ax - bx)
    angle = float(np.abs(np.degrees(radians)))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


# (first, vertex, last) for every joint angle the rules look at
JOINT_TRIPLETS = {
    "left_elbow": (Landmark.LEFT_SHOULDER, Landmark.LEFT_ELBOW, Landmark.LEFT_WRIST),
    "right_elbow": (Landmark.RIGHT_SHOULDER, Landmark.RIGHT_ELBOW, Landmark.RIGHT_WRIST),
    "left_shoulder": (Landmark.LEFT_HIP, Landmark.LEFT_SHOULDER, Landmark.LEFT_ELBOW),
    "right_shoulder": (Landmark.RIGHT_HIP, Landmark.RIGHT_SHOULDER, Landmark.RIGHT_ELBOW),
    "left_hip": (Landmark.LEFT_SHOULDER, Landmark.LEFT_HIP, Landmark.LEFT_KNEE),
    "right_hip": (Landmark.RIGHT_SHOULDER, Landmark.RIGHT_HIP, Landmark.RIGHT_KNEE),
    "left_knee": (Landmark.LEFT_HIP, Landmark.LEFT_KNEE, Landmark.LEFT_ANKLE),
    "right_knee": (Landmark.RIGHT_HIP, Landmark.RIGHT_KNEE, Landmark.RIGHT_ANKLE),
}


def extract_joint_angles(skeleton: Skeleton, threshold: float = VISIBILITY_THRESHOLD) -> JointAngles:
    """Calculate the elbow, shoulder, hip and knee angles on both sides."""
    angles = {}
    for joint, (first, vertex, last) in JOINT_TRIPLETS.items():
        points = [skeleton.visible(lm, threshold) for lm in (first, vertex, last)]
        if all(p is not None for p in points):
            angles[joint] = angle_degrees(*points)
        else:
            angles[joint] = None
    return JointAngles(**angles)


@dataclass(frozen=True)
class PoseFeatures:
    """Everything a rule predicate may look at for one skeleton."""

    skeleton: Skeleton
    angles: JointAngles
    threshold: float = VISIBILITY_THRESHOLD

    def point(self, landmark: Landmark) -> Optional[Keypoint]:
        return self.skeleton.visible(landmark, self.threshold)


def _above(value: Optional[float], limit: float) -> bool:
    return value is not None and value > limit


def _below(value: Optional[float], limit: float) -> bool:
    return value is not None and value < limit


def _one_bent(left: Optional[float], right: Optional[float], bent: float, straight: float) -> bool:
    """One joint below `bent` while the other is above `straight`."""
    return (_below(left, bent) and _above(right, straight)) or (
        _below(right, bent) and _above(left, straight)
    )


def _legs_upright(f: PoseFeatures) -> bool:
    a = f.angles
    return (
        _above(a.left_knee, 160)
        and _above(a.right_knee, 160)
        and _above(a.left_hip, 160)
        and _above(a.right_hip, 160)
    )


def _wider_than_tall(f: PoseFeatures) -> bool:
    # Horizontal body: shoulder-to-ankle span is wider than it is tall
    shoulder = f.point(Landmark.LEFT_SHOULDER)
    ankle = f.point(Landmark.LEFT_ANKLE)
    if shoulder is None or ankle is None:
        return False
    return abs(shoulder.x - ankle.x) > abs(shoulder.y - ankle.y)


def is_prayer(f: PoseFeatures) -> bool:
    a = f.angles
    if not (_legs_upright(f) and _below(a.left_elbow, 160) and _below(a.right_elbow, 160)):
        return False
    left_wrist = f.point(Landmark.LEFT_WRIST)
    right_wrist = f.point(Landmark.RIGHT_WRIST)
    if left_wrist is None or right_wrist is None:
        return False
    return abs(left_wrist.x - right_wrist.x) < 50


def is_mountain(f: PoseFeatures) -> bool:
    a = f.angles
    return _legs_upright(f) and _below(a.left_shoulder, 30) and _below(a.right_shoulder, 30)


def is_tree(f: PoseFeatures) -> bool:
    a = f.angles
    return _one_bent(a.left_knee, a.right_knee, bent=100, straight=160) and (
        _above(a.left_hip, 150) or _above(a.right_hip, 150)
    )


def is_plank(f: PoseFeatures) -> bool:
    a = f.angles
    return (
        _above(a.left_elbow, 160)
        and _above(a.right_elbow, 160)
        and _legs_upright(f)
        and _wider_than_tall(f)
    )


def is_downward_dog(f: PoseFeatures) -> bool:
    hip = f.point(Landmark.LEFT_HIP)
    shoulder = f.point(Landmark.LEFT_SHOULDER)
    ankle = f.point(Landmark.LEFT_ANKLE)
    if hip is None or shoulder is None or ankle is None:
        return False
    # Inverted V: hips are the highest point (smallest y)
    if not (hip.y < shoulder.y and hip.y < ankle.y):
        return False
    a = f.angles
    return (
        _below(a.left_hip, 100)
        and _below(a.right_hip, 100)
        and _above(a.left_knee, 150)
        and _above(a.right_knee, 150)
    )


def is_warrior_two(f: PoseFeatures) -> bool:
    a = f.angles
    arms_horizontal = all(
        angle is not None and abs(angle - 90) < 30 for angle in (a.left_shoulder, a.right_shoulder)
    )
    return arms_horizontal and _one_bent(a.left_knee, a.right_knee, bent=110, straight=150)


def is_corpse(f: PoseFeatures) -> bool:
    return _legs_upright(f) and _wider_than_tall(f)


def is_low_lunge(f: PoseFeatures) -> bool:
    a = f.angles
    if not _one_bent(a.left_knee, a.right_knee, bent=100, straight=120):
        return False
    wrist = f.point(Landmark.LEFT_WRIST)
    shoulder = f.point(Landmark.LEFT_SHOULDER)
    # Hands lowered toward the floor
    return wrist is not None and shoulder is not None and wrist.y > shoulder.y


@dataclass(frozen=True)
class PoseRule:
    name: str
    confidence: float
    matches: Callable[[PoseFeatures], bool]


# Evaluated top to bottom; the first match wins. Confidences are fixed per rule.
POSE_RULES: Tuple[PoseRule, ...] = (
    PoseRule("Pranamasana", 0.85, is_prayer),
    PoseRule("Tadasana", 0.9, is_mountain),
    PoseRule("Vrikshasana", 0.85, is_tree),
    PoseRule("Phalakasana", 0.8, is_plank),
    PoseRule("Adho Mukha Svanasana", 0.9, is_downward_dog),
    PoseRule("Virabhadrasana II", 0.85, is_warrior_two),
    PoseRule("Savasana", 0.9, is_corpse),
    PoseRule("Ashwa Sanchalanasana", 0.8, is_low_lunge),
)


class PoseClassifier:
    """Ordered decision list mapping a skeleton to a named pose."""

    def __init__(
        self,
        rules: Sequence[PoseRule] = POSE_RULES,
        visibility_threshold: float = VISIBILITY_THRESHOLD,
    ):
        self.rules = tuple(rules)
        self.visibility_threshold = visibility_threshold

    def features(self, skeleton: Skeleton) -> PoseFeatures:
        return PoseFeatures(
            skeleton=skeleton,
            angles=extract_joint_angles(skeleton, self.visibility_threshold),
            threshold=self.visibility_threshold,
        )

    def classify(self, skeleton: Optional[Skeleton]) -> Classification:
        if skeleton is None:
            return Classification.unknown()

        features = self.features(skeleton)
        for rule in self.rules:
            try:
                matched = rule.matches(features)
            except Exception:
                logger.exception("Pose rule %s failed; treating it as no match", rule.name)
                continue
            if matched:
                return Classification(pose_name=rule.name, confidence=rule.confidence)
        return Classification.unknown()


_default_classifier = PoseClassifier()


def classify_pose(skeleton: Optional[Skeleton]) -> Classification:
    """Classify with the default rule set and visibility threshold."""
    return _default_classifier.classify(skeleton)
