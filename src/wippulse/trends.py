"""Trend deltas over a window of historical snapshots."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import TrendResult
from .policy import round_to
from .snapshots import MetricExtractor

TrendPoint = Tuple[datetime, Dict[str, Any]]

UP = "up"
DOWN = "down"
FLAT = "flat"


def no_data(window_days: int, data_points: int = 0) -> TrendResult:
    return TrendResult(
        direction=FLAT,
        percent_change=0.0,
        has_enough_data=False,
        actual_days=0,
        requested_days=window_days,
        data_points=data_points,
    )


def calculate_trend(
    points: Iterable[TrendPoint],
    extractor: MetricExtractor,
    window_days: int,
    now: datetime,
    flat_threshold: float = 2.0,
) -> TrendResult:
    """Compare the earliest and latest in-window values of one metric.

    ``percent_change`` is the signed difference in percentage points, not a
    relative change. ``actual_days`` is the span actually covered by the data,
    so a trend built from a few days of history reports a reduced window
    instead of posing as a full-window comparison.

    Args:
        points: ``(captured_at, payload)`` pairs in any order.
        extractor: Pulls one scalar from a payload; ``None`` drops the point.
        window_days: Requested window, counted back from ``now``.
        now: End of the window.
        flat_threshold: Changes smaller than this are reported as flat.
    """
    window_start = now - timedelta(days=window_days)
    values: List[Tuple[datetime, float]] = []
    for captured_at, payload in points:
        if captured_at < window_start or captured_at > now:
            continue
        value: Optional[float] = extractor(payload)
        if value is None:
            continue
        values.append((captured_at, value))

    if len(values) < 2:
        return no_data(window_days, data_points=len(values))

    values.sort(key=lambda point: point[0])
    (earliest_at, earliest), (latest_at, latest) = values[0], values[-1]
    change = round_to(latest - earliest)

    if abs(change) < flat_threshold:
        direction = FLAT
    elif change > 0:
        direction = UP
    else:
        direction = DOWN

    span_days = (latest_at - earliest_at).total_seconds() / 86400
    actual_days = max(1, int(round_to(span_days, 0)))
    return TrendResult(
        direction=direction,
        percent_change=change,
        has_enough_data=True,
        actual_days=min(actual_days, window_days),
        requested_days=window_days,
        data_points=len(values),
    )
