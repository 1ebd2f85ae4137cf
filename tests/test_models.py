import pytest
from pydantic import ValidationError

from yoga_monitor.models import Classification, Keypoint, Landmark, Skeleton


def test_from_mapping_accepts_names_and_fills_gaps():
    skeleton = Skeleton.from_mapping({"left_hip": (10, 20, 0.9), Landmark.NOSE: (1, 2, 0.5)})
    assert len(skeleton.keypoints) == 17
    assert skeleton[Landmark.LEFT_HIP].x == 10
    assert skeleton.visible(Landmark.NOSE) is not None
    assert skeleton.visible(Landmark.RIGHT_KNEE) is None


def test_visibility_threshold_is_strict():
    kp = Keypoint(landmark=Landmark.NOSE, x=0, y=0, score=0.3)
    assert not kp.is_visible()
    assert kp.is_visible(threshold=0.2)


def test_skeleton_needs_all_landmarks_in_order():
    keypoints = Skeleton.from_mapping({}).keypoints
    with pytest.raises(ValidationError):
        Skeleton(keypoints=keypoints[:16])
    with pytest.raises(ValidationError):
        Skeleton(keypoints=tuple(reversed(keypoints)))


def test_skeleton_is_immutable():
    skeleton = Skeleton.from_mapping({})
    with pytest.raises(ValidationError):
        skeleton.keypoints = ()


def test_score_is_bounded():
    with pytest.raises(ValidationError):
        Keypoint(landmark=Landmark.NOSE, x=0, y=0, score=1.5)


def test_unknown_sentinel():
    unknown = Classification.unknown()
    assert unknown.pose_name == "Unknown" and unknown.confidence == 0.0
    assert unknown.is_unknown
