"""Velocity-trajectory classification of projects against their target date."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from .models import ProjectSummary
from .policy import ProjectHealth, is_open


@dataclass(slots=True, frozen=True)
class TrajectoryAssessment:
    health: ProjectHealth
    days_late: Optional[int] = None
    projected_completion: Optional[datetime] = None


class TrajectoryClassifier(Protocol):
    """Classifies a project from its work items; swap in other models freely."""

    def classify(self, project: ProjectSummary, as_of: datetime) -> TrajectoryAssessment:
        ...


class ThroughputTrajectoryClassifier:
    """Project completion from recent completion rate versus remaining scope.

    The completion rate is the number of items completed in the last
    ``lookback_days`` divided by that window. The remaining open items at that
    rate give a projected completion date, which is compared to the target:
    more than ``off_track_days`` late is off track, more than
    ``at_risk_days`` late is at risk.
    """

    def __init__(self, lookback_days: int = 14, at_risk_days: int = 14, off_track_days: int = 28) -> None:
        if lookback_days < 1:
            raise ValueError("lookback_days must be >= 1")
        self.lookback_days = lookback_days
        self.at_risk_days = at_risk_days
        self.off_track_days = off_track_days

    def classify(self, project: ProjectSummary, as_of: datetime) -> TrajectoryAssessment:
        remaining = sum(1 for item in project.items if is_open(item))
        if remaining == 0:
            return TrajectoryAssessment(ProjectHealth.ON_TRACK, days_late=0, projected_completion=as_of)

        window_start = as_of - timedelta(days=self.lookback_days)
        completed = sum(
            1
            for item in project.items
            if item.completed_at is not None and window_start <= item.completed_at <= as_of
        )
        if completed == 0:
            # No recent throughput to project from.
            return TrajectoryAssessment(ProjectHealth.ON_TRACK)

        rate_per_day = completed / self.lookback_days
        projected = as_of + timedelta(days=remaining / rate_per_day)
        if project.target_date is None:
            return TrajectoryAssessment(ProjectHealth.ON_TRACK, projected_completion=projected)

        days_late = round((projected - project.target_date).total_seconds() / 86400)
        if days_late > self.off_track_days:
            health = ProjectHealth.OFF_TRACK
        elif days_late > self.at_risk_days:
            health = ProjectHealth.AT_RISK
        else:
            health = ProjectHealth.ON_TRACK
        return TrajectoryAssessment(health, days_late=days_late, projected_completion=projected)
