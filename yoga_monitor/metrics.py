import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import (
    UNKNOWN_POSE,
    LogEntry,
    Narrative,
    PoseStat,
    Session,
    SessionMetrics,
    SessionReport,
    TopPose,
)

logger = logging.getLogger(__name__)

# Frames are not timed per hold; time per pose is frame count over this rate.
ASSUMED_FRAME_RATE = 30.0
TOP_POSE_COUNT = 3
NO_POSE = "None"

HOLD_FEEDBACK = "Focus on maintaining steady breathing and core engagement."
GENERAL_ADVICE = (
    "Listen to your body. Yoga is not about touching your toes, "
    "it is about what you learn on the way down."
)


def pose_durations(entries: Sequence[LogEntry], frame_rate: float = ASSUMED_FRAME_RATE) -> List[PoseStat]:
    """Group entries by pose name, longest estimated time first."""
    groups: Dict[str, List[float]] = {}
    for entry in entries:
        groups.setdefault(entry.pose_name, []).append(entry.confidence)

    stats = [
        PoseStat(
            pose_name=name,
            frame_count=len(confidences),
            estimated_seconds=len(confidences) / frame_rate,
            avg_confidence=float(np.mean(confidences)),
        )
        for name, confidences in groups.items()
    ]
    # sorted() is stable, so ties keep first-seen order
    return sorted(stats, key=lambda s: s.estimated_seconds, reverse=True)


def build_narrative(durations: Sequence[PoseStat]) -> Narrative:
    known = [s for s in durations if s.pose_name != UNKNOWN_POSE]
    if not known:
        return Narrative(
            strength=f"You showed great endurance in {NO_POSE}, holding it for 0.0s with 0% confidence.",
            growth=f"{NO_POSE} was fleeting. Practice holding it for 5 deep breaths.",
            advice=GENERAL_ADVICE,
        )

    best, weakest = known[0], known[-1]
    return Narrative(
        strength=(
            f"You showed great endurance in {best.pose_name}, holding it for "
            f"{best.estimated_seconds:.1f}s with {best.avg_confidence * 100:.0f}% confidence."
        ),
        growth=f"{weakest.pose_name} was fleeting. Practice holding it for 5 deep breaths.",
        advice=GENERAL_ADVICE,
    )


def compute_metrics(
    entries: Sequence[LogEntry],
    frame_rate: float = ASSUMED_FRAME_RATE,
    top_n: int = TOP_POSE_COUNT,
) -> Optional[SessionMetrics]:
    """
    Summarize a session log. Returns None for an empty log.

    Logic:
    1. Mean confidence over every entry.
    2. Per pose: frame count, frames / frame_rate seconds, mean confidence.
    3. Order poses by estimated seconds, descending.
    4. Top poses are the first `top_n` that are not Unknown.
    5. Narrative names the top pose as the strength and the last known pose
       as the area for growth.
    """
    if not entries:
        return None

    durations = pose_durations(entries, frame_rate)
    top_poses = [
        TopPose(**stat.model_dump(), longest_hold=stat.estimated_seconds, feedback=HOLD_FEEDBACK)
        for stat in durations
        if stat.pose_name != UNKNOWN_POSE
    ][:top_n]

    return SessionMetrics(
        total_frames=len(entries),
        avg_confidence=float(np.mean([e.confidence for e in entries])),
        pose_durations=durations,
        top_poses=top_poses,
        narrative=build_narrative(durations),
    )


def build_report(
    session: Session,
    now: Optional[datetime] = None,
    frame_rate: float = ASSUMED_FRAME_RATE,
    top_n: int = TOP_POSE_COUNT,
) -> SessionReport:
    """Assemble the record handed to report renderers. An open session runs until `now`."""
    end = session.end_time or now or datetime.now()
    return SessionReport(
        practitioner_id=session.practitioner_id,
        start_time=session.start_time,
        end_time=session.end_time,
        duration_seconds=max(0.0, (end - session.start_time).total_seconds()),
        entries=list(session.entries),
        metrics=compute_metrics(session.entries, frame_rate, top_n),
    )


def export_report_json(report: SessionReport, path: str) -> None:
    """Export a SessionReport to a JSON file."""
    with open(path, "w") as f:
        json.dump(report.model_dump(mode="json"), f, indent=2)
    logger.info("Session report written to %s", path)
