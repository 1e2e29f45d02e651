"""Per-engineer WIP aggregation and per-project grouping of work items."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from .config import Thresholds
from .models import EngineerAggregate, ProjectSummary, WorkItem
from .policy import is_started, round_to, team_keys_of

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _age_days(item: WorkItem, as_of: datetime) -> float:
    started = item.started_at or item.created_at
    return max(0.0, (as_of - started).total_seconds() / 86400)


def _lacks_recent_comment(item: WorkItem, as_of: datetime, hours: int) -> bool:
    if item.last_comment_at is None:
        return True
    return (as_of - item.last_comment_at).total_seconds() / 3600 > hours


def compute_engineer_aggregates(
    items: Iterable[WorkItem],
    thresholds: Thresholds,
    as_of: datetime,
) -> List[EngineerAggregate]:
    """Group started, assigned work items by assignee and flag WIP violations.

    Args:
        items: Work items in scope; non-started and unassigned items are ignored.
        thresholds: WIP ceiling, focus ceiling and WIP-age limit.
        as_of: Reference time for WIP ages.

    Returns:
        One aggregate per engineer, ordered by name then id.
    """
    grouped: Dict[str, List[WorkItem]] = defaultdict(list)
    for item in items:
        if item.assignee is None or not is_started(item):
            continue
        grouped[item.assignee.id].append(item)

    aggregates: List[EngineerAggregate] = []
    for assignee_id, engineer_items in grouped.items():
        ages = [_age_days(item, as_of) for item in engineer_items]
        project_ids = {item.project.id for item in engineer_items if item.project is not None}
        issue_count = len(engineer_items)

        aggregates.append(
            EngineerAggregate(
                assignee_id=assignee_id,
                assignee_name=engineer_items[0].assignee_name,
                issue_count=issue_count,
                total_points=sum(item.estimate or 0.0 for item in engineer_items),
                active_project_count=len(project_ids),
                oldest_wip_age_days=round_to(max(ages)) if ages else None,
                team_keys=team_keys_of(engineer_items),
                wip_violation=issue_count > thresholds.wip_limit,
                multi_project_violation=len(project_ids) > thresholds.multi_project_limit,
                missing_estimate_count=sum(1 for item in engineer_items if item.estimate is None),
                missing_priority_count=sum(1 for item in engineer_items if not item.priority),
                no_recent_comment_count=sum(
                    1
                    for item in engineer_items
                    if _lacks_recent_comment(item, as_of, thresholds.comment_recent_hours)
                ),
                wip_age_violation_count=sum(1 for age in ages if age > thresholds.wip_age_days),
            )
        )

    aggregates.sort(key=lambda aggregate: (aggregate.assignee_name.lower(), aggregate.assignee_id))
    return aggregates


def project_summaries(items: Iterable[WorkItem]) -> List[ProjectSummary]:
    """Group work items by project.

    Project fields are denormalized onto every item, so the copy from the most
    recently updated project wins (item id breaks ties).
    """
    grouped: Dict[str, List[WorkItem]] = defaultdict(list)
    for item in items:
        if item.project is not None:
            grouped[item.project.id].append(item)

    summaries: List[ProjectSummary] = []
    for project_id, project_items in grouped.items():
        project_items.sort(key=lambda item: item.id)
        source = max(
            project_items,
            key=lambda item: (
                item.project.updated_at or _EPOCH,
                item.updated_at,
                item.id,
            ),
        ).project
        summaries.append(
            ProjectSummary(
                id=project_id,
                name=source.name,
                state=source.state,
                health=source.health,
                target_date=source.target_date,
                team_keys=team_keys_of(project_items),
                items=project_items,
                lead=source.lead,
                last_activity_at=max(
                    [item.updated_at for item in project_items]
                    + ([source.updated_at] if source.updated_at else [])
                ),
            )
        )

    summaries.sort(key=lambda summary: (summary.name.lower(), summary.id))
    return summaries
