import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "YOGA_MONITOR_"


class MonitorSettings(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    # Scheduler: ~10 inference requests per second on a ~60Hz tick source
    min_dispatch_interval_s: float = Field(default=0.1, ge=0.0)
    tick_hz: float = Field(default=60.0, gt=0.0)
    worker_join_timeout_s: float = Field(default=2.0, ge=0.0)

    # Classifier
    visibility_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # Aggregator
    assumed_frame_rate: float = Field(default=30.0, gt=0.0)
    top_pose_count: int = Field(default=3, ge=0)

    # OpenCV DNN backend
    model_dir: Path = Path(__file__).parent / "models"
    input_size: int = Field(default=368, gt=0)
    heatmap_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MonitorSettings":
        """Build settings from YOGA_MONITOR_* variables layered over the defaults."""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for name in cls.model_fields:
            value = environ.get(ENV_PREFIX + name.upper())
            if value is not None and value != "":
                overrides[name] = value
        return cls.model_validate(overrides)


@lru_cache(maxsize=1)
def get_settings() -> MonitorSettings:
    return MonitorSettings.from_env()
