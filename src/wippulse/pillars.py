"""The four metric pillars, plus Linear hygiene, computed for every aggregation level.

Each function returns the plain-dict section stored in a snapshot payload.
Every number in a section can be recomputed from the stored work items and
the thresholds embedded alongside it in the payload.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .config import Thresholds
from .errors import UpstreamSignalUnavailable
from .models import EngineerAggregate, ProjectSummary, WorkItem
from .policy import (
    CLOSED_STATE_TYPES,
    PillarStatus,
    ProjectHealth,
    hygiene_status,
    is_bug,
    is_open,
    normalize_health,
    percent,
    round_to,
    status_for_score,
    worse_health,
)
from .productivity import ThroughputSource
from .trajectory import TrajectoryClassifier


def team_health(aggregates: List[EngineerAggregate], thresholds: Thresholds) -> Dict[str, Any]:
    """WIP health: share of engineers within both the WIP and focus ceilings.

    With no engineers in scope nobody is overloaded, so the percentage is 100.
    """
    total = len(aggregates)
    healthy = sum(1 for aggregate in aggregates if aggregate.is_healthy)
    healthy_percent = percent(healthy, total, empty=100.0)
    return {
        "healthyWorkloadPercent": healthy_percent,
        "healthyEngineerCount": healthy,
        "totalEngineerCount": total,
        "wipViolationCount": sum(1 for aggregate in aggregates if aggregate.wip_violation),
        "multiProjectViolationCount": sum(
            1 for aggregate in aggregates if aggregate.multi_project_violation
        ),
        "wipAgeViolationCount": sum(aggregate.wip_age_violation_count for aggregate in aggregates),
        "engineers": [
            {
                "assigneeId": aggregate.assignee_id,
                "assigneeName": aggregate.assignee_name,
                "issueCount": aggregate.issue_count,
                "totalPoints": aggregate.total_points,
                "activeProjectCount": aggregate.active_project_count,
                "oldestWipAgeDays": aggregate.oldest_wip_age_days,
                "wipViolation": aggregate.wip_violation,
                "multiProjectViolation": aggregate.multi_project_violation,
                "missingEstimateCount": aggregate.missing_estimate_count,
                "missingPriorityCount": aggregate.missing_priority_count,
                "noRecentCommentCount": aggregate.no_recent_comment_count,
                "wipAgeViolationCount": aggregate.wip_age_violation_count,
            }
            for aggregate in aggregates
        ],
        "status": status_for_score(healthy_percent, thresholds).value,
    }


def _is_scoped_project(project: ProjectSummary) -> bool:
    if project.target_date is None:
        return False
    return (project.state or "").lower() not in CLOSED_STATE_TYPES


def velocity_health(
    projects: Iterable[ProjectSummary],
    classifier: TrajectoryClassifier,
    thresholds: Thresholds,
    as_of: datetime,
) -> Dict[str, Any]:
    """Project health as the worse of the self-reported and trajectory signals."""
    statuses: List[Dict[str, Any]] = []
    for project in projects:
        if not _is_scoped_project(project):
            continue

        human = normalize_health(project.health)
        assessment = classifier.classify(project, as_of)
        if human is None:
            effective, source = assessment.health, "velocity"
        else:
            effective = worse_health(human, assessment.health)
            source = "human" if effective == human else "velocity"

        statuses.append(
            {
                "projectId": project.id,
                "projectName": project.name,
                "humanHealth": human.value if human else None,
                "velocityHealth": assessment.health.value,
                "effectiveHealth": effective.value,
                "healthSource": source,
                "daysOffTarget": assessment.days_late,
            }
        )

    total = len(statuses)
    counts = {health: 0 for health in ProjectHealth}
    for status in statuses:
        counts[ProjectHealth(status["effectiveHealth"])] += 1

    on_track_percent = percent(counts[ProjectHealth.ON_TRACK], total, empty=100.0)
    return {
        "projectCount": total,
        "onTrackPercent": on_track_percent,
        "atRiskPercent": percent(counts[ProjectHealth.AT_RISK], total),
        "offTrackPercent": percent(counts[ProjectHealth.OFF_TRACK], total),
        "projects": statuses,
        "status": status_for_score(on_track_percent, thresholds).value,
    }


def productivity_health(
    source: ThroughputSource,
    level: str,
    level_id: Optional[str],
    engineer_count: int,
    thresholds: Thresholds,
) -> Dict[str, Any]:
    """TrueThroughput per engineer as a percentage of the weekly goal.

    TrueThroughput values are biweekly, so the per-engineer value is divided by
    the measurement window in weeks before comparing against the goal. A
    missing signal reports ``unavailable`` instead of a zero.
    """
    try:
        if engineer_count <= 0:
            raise UpstreamSignalUnavailable("No engineers in scope", phase="productivity")
        true_throughput = source.true_throughput(level, level_id)
    except UpstreamSignalUnavailable as exc:
        return {
            "available": False,
            "reason": str(exc),
            "engineerCount": engineer_count,
            "trueThroughput": None,
            "percentOfGoal": None,
            "status": PillarStatus.UNAVAILABLE.value,
        }

    per_engineer = true_throughput / engineer_count
    weekly_rate = per_engineer / thresholds.throughput_window_weeks
    percent_of_goal = int(round_to(weekly_rate / thresholds.throughput_weekly_goal * 100, 0))
    return {
        "available": True,
        "engineerCount": engineer_count,
        "trueThroughput": true_throughput,
        "throughputPerEngineer": round_to(per_engineer, 2),
        "weeklyRatePerEngineer": round_to(weekly_rate, 2),
        "weeklyGoal": thresholds.throughput_weekly_goal,
        "percentOfGoal": percent_of_goal,
        "status": status_for_score(percent_of_goal, thresholds).value,
    }


def quality_composite_score(
    open_bugs: int,
    net_change: int,
    average_age_days: float,
    engineer_count: int,
    thresholds: Thresholds,
) -> int:
    """Weighted 0-100 score: 30% open bugs, 40% net bug change, 30% bug age."""
    engineers = max(1, engineer_count)
    bug_score = 100 - open_bugs / engineers * thresholds.bug_penalty_per_engineer
    net_score = 100 - net_change / engineers * thresholds.net_bug_penalty_per_engineer
    age_score = 100 - average_age_days * thresholds.age_penalty_per_day

    def clamp(score: float) -> float:
        return min(100.0, max(0.0, score))

    weighted = clamp(bug_score) * 0.3 + clamp(net_score) * 0.4 + clamp(age_score) * 0.3
    return int(round_to(weighted, 0))


def quality_health(
    items: Iterable[WorkItem],
    engineer_count: int,
    thresholds: Thresholds,
    as_of: datetime,
) -> Dict[str, Any]:
    """Bug load and trend over the quality period.

    Bugs are identified by a label heuristic (see ``policy.is_bug``), so counts
    are approximate by construction.
    """
    period_start = as_of - timedelta(days=thresholds.quality_period_days)
    bugs = [item for item in items if is_bug(item)]
    open_bugs = [item for item in bugs if is_open(item)]
    opened = sum(1 for item in bugs if item.created_at >= period_start)
    closed = sum(
        1 for item in bugs if item.completed_at is not None and item.completed_at >= period_start
    )
    ages = [max(0.0, (as_of - item.created_at).total_seconds() / 86400) for item in open_bugs]
    average_age = sum(ages) / len(ages) if ages else 0.0
    net_change = opened - closed

    score = quality_composite_score(len(open_bugs), net_change, average_age, engineer_count, thresholds)
    return {
        "bugClassification": "label-substring:bug",
        "openBugCount": len(open_bugs),
        "bugsOpenedInPeriod": opened,
        "bugsClosedInPeriod": closed,
        "netBugChange": net_change,
        "averageBugAgeDays": round_to(average_age),
        "maxBugAgeDays": round_to(max(ages)) if ages else 0.0,
        "engineerCount": engineer_count,
        "compositeScore": score,
        "status": status_for_score(score, thresholds).value,
    }


ENGINEER_GAP_TYPES = 4
PROJECT_GAP_TYPES = 5


def _project_gaps(
    project: ProjectSummary,
    classifier: TrajectoryClassifier,
    thresholds: Thresholds,
    as_of: datetime,
) -> Dict[str, bool]:
    state = (project.state or "").lower()
    stale_cutoff = as_of - timedelta(days=thresholds.project_stale_days)
    projected = classifier.classify(project, as_of).projected_completion
    discrepancy = False
    if project.target_date is not None and projected is not None:
        gap_days = abs((projected - project.target_date).total_seconds()) / 86400
        discrepancy = gap_days > thresholds.date_discrepancy_days
    return {
        "missingLead": project.lead is None,
        "staleUpdate": project.last_activity_at is None or project.last_activity_at < stale_cutoff,
        # Started work under a project that is not itself in progress.
        "statusMismatch": "progress" not in state and "started" not in state,
        "missingHealth": not project.health,
        "dateDiscrepancy": discrepancy,
    }


def hygiene_health(
    aggregates: List[EngineerAggregate],
    projects: Iterable[ProjectSummary],
    classifier: TrajectoryClassifier,
    thresholds: Thresholds,
    as_of: datetime,
) -> Dict[str, Any]:
    """Linear hygiene: how many tracking gaps exist out of all that could.

    Each WIP item can miss an estimate, a priority, a recent comment or stay
    in progress too long. Each project with started work can miss a lead, a
    recent update, a matching state, a health update or a target close to
    its projected completion. The score is ``(1 - gaps / possible) * 100``.
    """
    active_projects = [project for project in projects if project.started_item_count > 0]
    project_flags = [_project_gaps(project, classifier, thresholds, as_of) for project in active_projects]

    engineer_totals = {
        "missingEstimateCount": sum(aggregate.missing_estimate_count for aggregate in aggregates),
        "missingPriorityCount": sum(aggregate.missing_priority_count for aggregate in aggregates),
        "noRecentCommentCount": sum(aggregate.no_recent_comment_count for aggregate in aggregates),
        "wipAgeViolationCount": sum(aggregate.wip_age_violation_count for aggregate in aggregates),
    }
    project_totals = {
        f"{name}Count": sum(1 for flags in project_flags if flags[name])
        for name in ("missingLead", "staleUpdate", "statusMismatch", "missingHealth", "dateDiscrepancy")
    }

    total_gaps = sum(engineer_totals.values()) + sum(project_totals.values())
    wip_items = sum(aggregate.issue_count for aggregate in aggregates)
    max_gaps = wip_items * ENGINEER_GAP_TYPES + len(active_projects) * PROJECT_GAP_TYPES
    if max_gaps == 0:
        score = 100
    else:
        score = min(100, max(0, int(round_to((1 - total_gaps / max_gaps) * 100, 0))))

    return {
        "hygieneScore": score,
        "totalGaps": total_gaps,
        "maxPossibleGaps": max_gaps,
        **engineer_totals,
        **project_totals,
        "engineersWithGaps": sum(1 for aggregate in aggregates if aggregate.hygiene_gap_count),
        "totalEngineers": len(aggregates),
        "projectsWithGaps": sum(1 for flags in project_flags if any(flags.values())),
        "totalProjects": len(active_projects),
        "status": hygiene_status(score, thresholds).value,
    }
