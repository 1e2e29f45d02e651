"""Tests for the fixed-interval sync scheduler."""

import sys
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wippulse.errors import ApiError, StoreError, SyncInProgressError
from wippulse.models import CaptureResult, SyncReport
from wippulse.scheduler import SyncScheduler


def _scheduler(engine=None, metrics=None, **kwargs):
    engine = engine or Mock()
    metrics = metrics or Mock()
    return SyncScheduler(engine, metrics, **kwargs), engine, metrics


def test_run_once_syncs_then_captures():
    """Verify a tick runs a sync with the ignored keys and then captures snapshots."""
    scheduler, engine, metrics = _scheduler(ignored_team_keys={"SEC"})
    engine.synchronize.return_value = SyncReport(inserted=2)
    metrics.capture_all.return_value = CaptureResult(snapshots_created=3)

    report = scheduler.run_once()

    assert report.inserted == 2
    engine.synchronize.assert_called_once_with(frozenset({"SEC"}))
    metrics.capture_all.assert_called_once_with()


def test_run_once_skips_when_sync_in_flight():
    """Verify a tick that finds a running sync is skipped without capturing."""
    scheduler, engine, metrics = _scheduler()
    engine.synchronize.side_effect = SyncInProgressError("busy")

    assert scheduler.run_once() is None
    metrics.capture_all.assert_not_called()


def test_run_once_logs_sync_failures():
    """Verify a failed sync does not raise out of the scheduler."""
    scheduler, engine, metrics = _scheduler()
    engine.synchronize.side_effect = ApiError("down", phase="started")

    assert scheduler.run_once() is None
    metrics.capture_all.assert_not_called()


def test_run_once_survives_capture_failure():
    """Verify a capture failure still returns the sync report."""
    scheduler, engine, metrics = _scheduler()
    engine.synchronize.return_value = SyncReport(updated=1)
    metrics.capture_all.side_effect = StoreError("locked")

    assert scheduler.run_once().updated == 1


def test_start_and_stop_background_thread():
    """Verify the scheduler runs immediately on start and stops cleanly."""
    ran = threading.Event()

    def synchronize(ignored_team_keys):
        ran.set()
        return SyncReport()

    scheduler, engine, metrics = _scheduler(interval_seconds=3600)
    engine.synchronize.side_effect = synchronize
    metrics.capture_all.return_value = CaptureResult()

    scheduler.start()
    assert scheduler.running
    assert ran.wait(5)
    scheduler.stop(timeout=5)

    assert not scheduler.running
    assert engine.synchronize.call_count == 1
    assert scheduler.wait(0) is True


def test_unexpected_error_does_not_kill_background_thread():
    """Verify a tick raising a non-domain exception is logged and the loop keeps running."""
    second_tick = threading.Event()
    calls = []

    def synchronize(ignored_team_keys):
        calls.append(ignored_team_keys)
        if len(calls) == 1:
            raise ValueError("boom")
        second_tick.set()
        return SyncReport()

    scheduler, engine, metrics = _scheduler(interval_seconds=1)
    engine.synchronize.side_effect = synchronize
    metrics.capture_all.return_value = CaptureResult()

    scheduler.start()
    try:
        assert second_tick.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop(timeout=5)

    assert len(calls) >= 2


def test_interval_must_be_positive():
    """Verify a non-positive interval is rejected."""
    with pytest.raises(ValueError):
        SyncScheduler(Mock(), Mock(), interval_seconds=0)
