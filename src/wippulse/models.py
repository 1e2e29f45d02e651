"""Domain models for work-item sync and metrics computation.

These dataclasses model the subset of Linear issue payload fields the sync and
metrics engines need, plus the derived records they produce.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(slots=True, frozen=True)
class TeamRef:
    """Team that owns a work item."""

    id: str
    name: str
    key: str


@dataclass(slots=True, frozen=True)
class WorkflowState:
    """Workflow state of a work item; ``type`` is Linear's state category."""

    id: str
    name: str
    type: str


@dataclass(slots=True, frozen=True)
class PersonRef:
    id: str
    name: str


@dataclass(slots=True, frozen=True)
class ProjectRef:
    """Project fields denormalized onto every work item that belongs to it."""

    id: str
    name: str
    state: Optional[str] = None
    health: Optional[str] = None
    updated_at: Optional[datetime] = None
    target_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    lead: Optional[PersonRef] = None


@dataclass(slots=True)
class WorkItem:
    """One remote issue. ``id`` is the sole identity used for upserts and diffs."""

    id: str
    identifier: str
    title: str
    team: TeamRef
    state: WorkflowState
    created_at: datetime
    updated_at: datetime
    url: str
    description: Optional[str] = None
    assignee: Optional[PersonRef] = None
    priority: int = 0
    estimate: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    project: Optional[ProjectRef] = None
    labels: List[str] = field(default_factory=list)
    last_comment_at: Optional[datetime] = None
    parent_id: Optional[str] = None

    @property
    def assignee_name(self) -> str:
        return self.assignee.name if self.assignee else "Unassigned"


@dataclass(slots=True)
class SyncReport:
    """Outcome of one reconciliation run."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    ignored_filtered_count: int = 0
    total_stored: int = 0
    elapsed_seconds: float = 0.0
    fetched_count: int = 0
    project_count: int = 0
    stale_deleted: int = 0
    ignored_deleted: int = 0


@dataclass(slots=True)
class EngineerAggregate:
    """Per-assignee WIP figures derived from started work items; never stored."""

    assignee_id: str
    assignee_name: str
    issue_count: int
    total_points: float
    active_project_count: int
    oldest_wip_age_days: Optional[float]
    team_keys: List[str]
    wip_violation: bool
    multi_project_violation: bool
    missing_estimate_count: int = 0
    missing_priority_count: int = 0
    no_recent_comment_count: int = 0
    wip_age_violation_count: int = 0

    @property
    def is_healthy(self) -> bool:
        return not (self.wip_violation or self.multi_project_violation)

    @property
    def hygiene_gap_count(self) -> int:
        return (
            self.missing_estimate_count
            + self.missing_priority_count
            + self.no_recent_comment_count
            + self.wip_age_violation_count
        )


@dataclass(slots=True)
class ProjectSummary:
    """A project seen through the work items that reference it."""

    id: str
    name: str
    state: Optional[str]
    health: Optional[str]
    target_date: Optional[datetime]
    team_keys: List[str]
    items: List[WorkItem] = field(default_factory=list)
    lead: Optional[PersonRef] = None
    last_activity_at: Optional[datetime] = None

    @property
    def started_item_count(self) -> int:
        return sum(1 for item in self.items if item.state.type == "started")


@dataclass(slots=True)
class MetricsSnapshot:
    """One computed aggregate for a level. Immutable once appended to the store."""

    captured_at: datetime
    level: str
    level_id: Optional[str]
    payload: Dict[str, Any]


@dataclass(slots=True)
class StoredSnapshot:
    """A raw ``metrics_snapshots`` row; the payload is parsed on demand."""

    captured_at: datetime
    level: str
    level_id: Optional[str]
    schema_version: Optional[int]
    metrics_json: str


@dataclass(slots=True)
class TrendResult:
    """Earliest-vs-latest comparison of one metric inside a time window."""

    direction: str
    percent_change: float
    has_enough_data: bool
    actual_days: int
    requested_days: int
    data_points: int = 0

    @property
    def reduced_window(self) -> bool:
        """True when the data covers less time than the requested window."""
        return self.has_enough_data and self.actual_days < self.requested_days


@dataclass(slots=True)
class CaptureResult:
    """Summary of a multi-level snapshot capture pass."""

    snapshots_created: int = 0
    org: bool = False
    domains: List[str] = field(default_factory=list)
    teams: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
