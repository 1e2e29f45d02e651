"""Tests for trend calculation over snapshot windows."""

import sys
from datetime import timedelta
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import NOW
from wippulse.trends import calculate_trend


def _value(payload):
    return payload.get("v")


def _points(*pairs):
    return [(NOW - timedelta(days=days_ago), {"v": value}) for days_ago, value in pairs]


def test_partial_window_reports_actual_days():
    """Verify three days of data in a seven-day window is usable but flagged as reduced."""
    points = _points((3, 60.0), (2, 65.0), (1, 70.0), (0, 75.0))

    result = calculate_trend(points, _value, window_days=7, now=NOW)

    assert result.has_enough_data is True
    assert result.actual_days == 3
    assert result.requested_days == 7
    assert result.reduced_window is True
    assert result.direction == "up"
    assert result.percent_change == 15.0
    assert result.data_points == 4


def test_full_window_is_not_reduced():
    """Verify data covering the whole window is not flagged as reduced."""
    result = calculate_trend(_points((7, 80.0), (0, 70.0)), _value, window_days=7, now=NOW)

    assert result.actual_days == 7
    assert result.reduced_window is False
    assert result.direction == "down"
    assert result.percent_change == -10.0


def test_single_point_is_not_enough_data():
    """Verify fewer than two in-window points reports not enough data."""
    result = calculate_trend(_points((1, 50.0), (30, 10.0)), _value, window_days=7, now=NOW)

    assert result.has_enough_data is False
    assert result.data_points == 1
    assert result.reduced_window is False


def test_small_changes_are_flat():
    """Verify changes below the threshold are reported as flat."""
    result = calculate_trend(_points((2, 50.0), (0, 51.5)), _value, window_days=7, now=NOW)

    assert result.direction == "flat"
    assert result.percent_change == 1.5


def test_none_values_are_dropped():
    """Verify points whose extractor returns None do not count."""
    points = _points((2, 40.0), (1, None), (0, None))

    result = calculate_trend(points, _value, window_days=7, now=NOW)

    assert result.has_enough_data is False


def test_points_are_ordered_by_capture_time():
    """Verify earliest and latest are chosen by time, not input order."""
    points = _points((0, 90.0), (4, 70.0), (2, 10.0))

    result = calculate_trend(points, _value, window_days=7, now=NOW)

    assert result.percent_change == 20.0
    assert result.actual_days == 4


def test_same_day_points_report_one_day():
    """Verify a sub-day span reports the minimum of one day."""
    points = [(NOW - timedelta(hours=3), {"v": 10.0}), (NOW, {"v": 20.0})]

    result = calculate_trend(points, _value, window_days=30, now=NOW)

    assert result.actual_days == 1
