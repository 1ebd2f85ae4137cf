import threading
from datetime import datetime, timedelta, timezone

import pytest

from yoga_monitor.config import MonitorSettings
from yoga_monitor.errors import InvalidStateError
from yoga_monitor.monitor import PoseMonitor

from tests import skeletons
from tests.fakes import FakeEstimator, FakeSource

T0 = datetime(2024, 3, 1, 7, 0, 0)


class WallClock:
    """Advances by `step` on every reading."""

    def __init__(self, start=T0, step=timedelta(milliseconds=100)):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def settings():
    return MonitorSettings(worker_join_timeout_s=0.2)


def make_monitor(settings, estimator, source=None, wall_clock=None):
    return PoseMonitor(source or FakeSource(), estimator, settings, wall_clock=wall_clock or WallClock())


def run_ticks(monitor, start, count, step=0.15):
    for i in range(count):
        monitor.tick(start + i * step)
        assert monitor.scheduler.wait_idle(2)
    monitor.scheduler.deliver_results()


def test_live_session_end_to_end(settings):
    estimator = FakeEstimator(skeleton=skeletons.upright())
    monitor = make_monitor(settings, estimator)
    monitor.start("asha", T0)
    try:
        run_ticks(monitor, 0.0, 5)
        assert monitor.current_pose.pose_name == "Tadasana"

        estimator.skeleton = skeletons.downward_dog()
        run_ticks(monitor, 1.0, 3)
    finally:
        monitor.stop(T0 + timedelta(minutes=1))

    report = monitor.report()
    assert report.practitioner_id == "asha"
    assert report.duration_seconds == pytest.approx(60)
    metrics = report.metrics
    assert metrics.total_frames == 8
    assert [s.pose_name for s in metrics.pose_durations] == ["Tadasana", "Adho Mukha Svanasana"]
    assert metrics.narrative.growth.startswith("Adho Mukha Svanasana")


def test_entries_fall_inside_the_session_window(settings):
    monitor = make_monitor(settings, FakeEstimator(skeleton=skeletons.upright()))
    monitor.start("asha", T0)
    run_ticks(monitor, 0.0, 4)
    monitor.stop(T0 + timedelta(minutes=1))

    session = monitor.session.session
    assert len(session.entries) == 4
    for entry in session.entries:
        assert session.start_time <= entry.timestamp <= session.end_time


def test_one_wall_clock_stamps_the_whole_session(settings):
    clock = WallClock(start=datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc))
    monitor = make_monitor(settings, FakeEstimator(skeleton=skeletons.upright()), wall_clock=clock)
    monitor.start("asha")
    run_ticks(monitor, 0.0, 2)
    monitor.stop()

    session = monitor.session.session
    assert session.start_time.tzinfo is timezone.utc
    assert all(e.timestamp.tzinfo is timezone.utc for e in session.entries)
    assert session.start_time < session.entries[0].timestamp < session.entries[1].timestamp < session.end_time


def test_no_person_detected_logs_nothing(settings):
    monitor = make_monitor(settings, FakeEstimator(skeleton=None))
    monitor.start("asha", T0)
    run_ticks(monitor, 0.0, 3)
    monitor.stop(T0 + timedelta(seconds=5))
    assert monitor.session.entries == []
    assert monitor.report().metrics is None


def test_incomplete_skeleton_is_logged_as_unknown(settings):
    estimator = FakeEstimator(skeleton=skeletons.upright(hidden=[skeletons.L.LEFT_KNEE]))
    monitor = make_monitor(settings, estimator)
    monitor.start("asha", T0)
    run_ticks(monitor, 0.0, 2)
    monitor.stop(T0 + timedelta(seconds=5))
    assert [e.pose_name for e in monitor.session.entries] == ["Unknown", "Unknown"]


def test_late_result_after_stop_is_not_logged(settings):
    gate = threading.Event()
    estimator = FakeEstimator(skeleton=skeletons.upright(), gate=gate)
    monitor = make_monitor(settings, estimator)
    monitor.start("asha", T0)
    assert monitor.tick(0.0)
    worker = monitor.scheduler.worker

    monitor.stop(T0 + timedelta(seconds=1))
    gate.set()
    assert worker.wait_idle(2)
    monitor.tick(0.5)

    assert monitor.session.entries == []
    assert monitor.handle_skeleton(skeletons.upright()) is None
    assert monitor.session.entries == []


def test_stop_after_session_ended_elsewhere_still_releases_worker(settings):
    monitor = make_monitor(settings, FakeEstimator(skeleton=skeletons.upright()))
    monitor.start("asha", T0)
    assert monitor.scheduler.worker is not None

    monitor.session.end_session(T0 + timedelta(seconds=5))
    monitor.stop(T0 + timedelta(seconds=6))

    assert not monitor.scheduler.running
    assert monitor.scheduler.worker is None
    assert monitor.session.session.end_time == T0 + timedelta(seconds=5)


def test_restart_uses_a_fresh_session(settings):
    monitor = make_monitor(settings, FakeEstimator(skeleton=skeletons.upright()))
    monitor.start("asha", T0)
    run_ticks(monitor, 0.0, 2)
    monitor.stop(T0 + timedelta(seconds=10))

    monitor.start("ravi", T0 + timedelta(hours=1))
    try:
        assert monitor.session.entries == []
        run_ticks(monitor, 100.0, 1)
        assert len(monitor.session.entries) == 1
    finally:
        monitor.stop(T0 + timedelta(hours=1, seconds=10))


def test_start_twice_is_rejected(settings):
    monitor = make_monitor(settings, FakeEstimator())
    monitor.start("asha", T0)
    try:
        with pytest.raises(InvalidStateError):
            monitor.start("asha", T0)
    finally:
        monitor.close()


def test_context_manager_releases_everything(settings):
    source = FakeSource()
    estimator = FakeEstimator()
    with make_monitor(settings, estimator, source=source) as monitor:
        monitor.start("asha", T0)
    assert not monitor.session.is_active
    assert not monitor.scheduler.running
    assert source.released and estimator.closed
