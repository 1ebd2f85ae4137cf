from pathlib import Path

import pytest
from pydantic import ValidationError

from yoga_monitor.config import MonitorSettings


def test_defaults():
    settings = MonitorSettings()
    assert settings.min_dispatch_interval_s == 0.1
    assert settings.tick_hz == 60
    assert settings.visibility_threshold == 0.3
    assert settings.assumed_frame_rate == 30
    assert settings.top_pose_count == 3


def test_environment_overrides():
    settings = MonitorSettings.from_env({
        "YOGA_MONITOR_MIN_DISPATCH_INTERVAL_S": "0.25",
        "YOGA_MONITOR_TOP_POSE_COUNT": "5",
        "YOGA_MONITOR_MODEL_DIR": "/tmp/models",
        "YOGA_MONITOR_TICK_HZ": "",
        "UNRELATED": "1",
    })
    assert settings.min_dispatch_interval_s == 0.25
    assert settings.top_pose_count == 5
    assert settings.model_dir == Path("/tmp/models")
    assert settings.tick_hz == 60


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        MonitorSettings.from_env({"YOGA_MONITOR_VISIBILITY_THRESHOLD": "1.5"})


def test_settings_are_frozen():
    with pytest.raises(ValidationError):
        MonitorSettings().tick_hz = 30
