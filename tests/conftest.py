"""Shared fixtures: work-item factory, fake remote source and file-backed store."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wippulse.models import PersonRef, ProjectRef, TeamRef, WorkflowState, WorkItem
from wippulse.store import LocalStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def build_item(
    item_id,
    team="ENG",
    state="started",
    assignee="alice",
    project=None,
    project_health=None,
    target_date=None,
    project_state="started",
    estimate=1.0,
    priority=2,
    labels=None,
    created_days_ago=3,
    started_days_ago=2,
    updated_days_ago=0,
    completed_days_ago=None,
    commented_hours_ago=None,
    project_lead=None,
):
    """Build a ``WorkItem`` with sensible defaults for tests."""
    project_ref = None
    if project is not None:
        project_ref = ProjectRef(
            id=project,
            name=f"Project {project}",
            state=project_state,
            health=project_health,
            updated_at=NOW - timedelta(days=1),
            target_date=target_date,
            lead=PersonRef(id=f"user-{project_lead}", name=project_lead.title()) if project_lead else None,
        )
    return WorkItem(
        id=str(item_id),
        identifier=f"{team}-{item_id}",
        title=f"Item {item_id}",
        team=TeamRef(id=f"team-{team}", name=f"Team {team}", key=team),
        state=WorkflowState(id=f"state-{state}", name=state.title(), type=state),
        created_at=NOW - timedelta(days=created_days_ago),
        updated_at=NOW - timedelta(days=updated_days_ago),
        url=f"https://linear.app/issue/{team}-{item_id}",
        assignee=PersonRef(id=f"user-{assignee}", name=assignee.title()) if assignee else None,
        priority=priority,
        estimate=estimate,
        started_at=NOW - timedelta(days=started_days_ago) if state == "started" else None,
        completed_at=NOW - timedelta(days=completed_days_ago) if completed_days_ago is not None else None,
        project=project_ref,
        labels=list(labels or []),
        last_comment_at=(
            NOW - timedelta(hours=commented_hours_ago) if commented_hours_ago is not None else None
        ),
    )


class FakeSource:
    """In-memory stand-in for ``LinearClient``."""

    def __init__(self, started=None, by_project=None, reachable=True):
        self.started = list(started or [])
        self.by_project = dict(by_project or {})
        self.reachable = reachable
        self.project_calls = []
        self.fetch_error = None

    def test_connection(self):
        return self.reachable

    def fetch_by_state_type(self, state_type, on_progress=None):
        if self.fetch_error is not None:
            raise self.fetch_error
        if on_progress is not None:
            on_progress(len(self.started), len(self.started))
        return [item for item in self.started if item.state.type == state_type]

    def fetch_by_project_ids(self, project_ids, on_progress=None):
        project_ids = list(project_ids)
        self.project_calls.append(project_ids)
        items = []
        for project_id in project_ids:
            items.extend(self.by_project.get(project_id, []))
            if on_progress is not None:
                on_progress(len(items))
        return items


@pytest.fixture
def make_item():
    return build_item


@pytest.fixture
def store(tmp_path):
    local_store = LocalStore(f"sqlite:///{tmp_path / 'pulse.db'}")
    local_store.ensure_tables()
    yield local_store
    local_store.close()
