"""Relational store for synced work items and append-only metric snapshots."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, TypeVar

from sqlalchemy import bindparam, create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import StoreError
from .models import (
    MetricsSnapshot,
    PersonRef,
    ProjectRef,
    StoredSnapshot,
    TeamRef,
    WorkflowState,
    WorkItem,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_DELETE_CHUNK_SIZE = 500

_WORK_ITEM_COLUMNS = (
    "id",
    "identifier",
    "title",
    "description",
    "team_id",
    "team_name",
    "team_key",
    "state_id",
    "state_name",
    "state_type",
    "assignee_id",
    "assignee_name",
    "priority",
    "estimate",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "canceled_at",
    "url",
    "project_id",
    "project_name",
    "project_state",
    "project_health",
    "project_updated_at",
    "project_target_date",
    "project_start_date",
    "project_lead_id",
    "project_lead_name",
    "labels_json",
    "last_comment_at",
    "parent_id",
)

_CREATE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS work_items (
      id TEXT PRIMARY KEY,
      identifier TEXT NOT NULL,
      title TEXT NOT NULL,
      description TEXT,
      team_id TEXT NOT NULL,
      team_name TEXT NOT NULL,
      team_key TEXT NOT NULL,
      state_id TEXT NOT NULL,
      state_name TEXT NOT NULL,
      state_type TEXT NOT NULL,
      assignee_id TEXT,
      assignee_name TEXT,
      priority INTEGER NOT NULL DEFAULT 0,
      estimate REAL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      started_at TEXT,
      completed_at TEXT,
      canceled_at TEXT,
      url TEXT NOT NULL,
      project_id TEXT,
      project_name TEXT,
      project_state TEXT,
      project_health TEXT,
      project_updated_at TEXT,
      project_target_date TEXT,
      project_start_date TEXT,
      project_lead_id TEXT,
      project_lead_name TEXT,
      labels_json TEXT NOT NULL DEFAULT '[]',
      last_comment_at TEXT,
      parent_id TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_work_items_team_key ON work_items (team_key)",
    "CREATE INDEX IF NOT EXISTS idx_work_items_state_type ON work_items (state_type)",
    """
    CREATE TABLE IF NOT EXISTS metrics_snapshots (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      captured_at TEXT NOT NULL,
      schema_version INTEGER,
      level TEXT NOT NULL,
      level_id TEXT,
      metrics_json TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_metrics_snapshots_level
      ON metrics_snapshots (level, level_id, captured_at)
    """,
)

_UPSERT_WORK_ITEM = text(
    f"""
    INSERT INTO work_items ({", ".join(_WORK_ITEM_COLUMNS)})
    VALUES ({", ".join(":" + column for column in _WORK_ITEM_COLUMNS)})
    ON CONFLICT(id) DO UPDATE SET
      {", ".join(f"{column}=excluded.{column}" for column in _WORK_ITEM_COLUMNS if column != "id")}
    """
)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as fixed-width UTC text so string order is time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _item_row(item: WorkItem) -> Dict[str, Any]:
    project = item.project
    lead = project.lead if project else None
    return {
        "id": item.id,
        "identifier": item.identifier,
        "title": item.title,
        "description": item.description,
        "team_id": item.team.id,
        "team_name": item.team.name,
        "team_key": item.team.key,
        "state_id": item.state.id,
        "state_name": item.state.name,
        "state_type": item.state.type,
        "assignee_id": item.assignee.id if item.assignee else None,
        "assignee_name": item.assignee.name if item.assignee else None,
        "priority": item.priority,
        "estimate": item.estimate,
        "created_at": to_db_timestamp(item.created_at),
        "updated_at": to_db_timestamp(item.updated_at),
        "started_at": to_db_timestamp(item.started_at),
        "completed_at": to_db_timestamp(item.completed_at),
        "canceled_at": to_db_timestamp(item.canceled_at),
        "url": item.url,
        "project_id": project.id if project else None,
        "project_name": project.name if project else None,
        "project_state": project.state if project else None,
        "project_health": project.health if project else None,
        "project_updated_at": to_db_timestamp(project.updated_at) if project else None,
        "project_target_date": to_db_timestamp(project.target_date) if project else None,
        "project_start_date": to_db_timestamp(project.start_date) if project else None,
        "project_lead_id": lead.id if lead else None,
        "project_lead_name": lead.name if lead else None,
        "labels_json": json.dumps(list(item.labels)),
        "last_comment_at": to_db_timestamp(item.last_comment_at),
        "parent_id": item.parent_id,
    }


def _row_item(row: Mapping[str, Any]) -> WorkItem:
    project: Optional[ProjectRef] = None
    if row["project_id"]:
        lead = None
        if row["project_lead_id"]:
            lead = PersonRef(id=row["project_lead_id"], name=row["project_lead_name"] or "")
        project = ProjectRef(
            id=row["project_id"],
            name=row["project_name"] or "",
            state=row["project_state"],
            health=row["project_health"],
            updated_at=from_db_timestamp(row["project_updated_at"]),
            target_date=from_db_timestamp(row["project_target_date"]),
            start_date=from_db_timestamp(row["project_start_date"]),
            lead=lead,
        )

    assignee = None
    if row["assignee_id"]:
        assignee = PersonRef(id=row["assignee_id"], name=row["assignee_name"] or "")

    return WorkItem(
        id=row["id"],
        identifier=row["identifier"],
        title=row["title"],
        description=row["description"],
        team=TeamRef(id=row["team_id"], name=row["team_name"], key=row["team_key"]),
        state=WorkflowState(id=row["state_id"], name=row["state_name"], type=row["state_type"]),
        assignee=assignee,
        priority=int(row["priority"] or 0),
        estimate=row["estimate"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        started_at=from_db_timestamp(row["started_at"]),
        completed_at=from_db_timestamp(row["completed_at"]),
        canceled_at=from_db_timestamp(row["canceled_at"]),
        url=row["url"],
        project=project,
        labels=json.loads(row["labels_json"] or "[]"),
        last_comment_at=from_db_timestamp(row["last_comment_at"]),
        parent_id=row["parent_id"],
    )


def _chunks(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class StoreTransaction:
    """Work-item primitives bound to one open connection and transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def execute(self, stmt: Any, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self._conn.execute(stmt, params or {})

    def get_all_ids(self) -> Set[str]:
        rows = self._conn.execute(text("SELECT id FROM work_items")).fetchall()
        return {row[0] for row in rows}

    def upsert_work_item(self, item: WorkItem) -> bool:
        """Insert or overwrite ``item`` by id. Returns ``True`` when it was new."""
        existing = self._conn.execute(
            text("SELECT 1 FROM work_items WHERE id = :id"), {"id": item.id}
        ).first()
        self._conn.execute(_UPSERT_WORK_ITEM, _item_row(item))
        return existing is None

    def delete_work_items_by_ids(self, ids: Iterable[str]) -> int:
        stmt = text("DELETE FROM work_items WHERE id IN :ids").bindparams(
            bindparam("ids", expanding=True)
        )
        deleted = 0
        for chunk in _chunks(sorted(set(ids)), _DELETE_CHUNK_SIZE):
            deleted += self._conn.execute(stmt, {"ids": chunk}).rowcount
        return deleted

    def delete_work_items_by_team_keys(self, team_keys: Iterable[str]) -> int:
        """Delete every stored item whose team key matches, case-insensitively."""
        keys = sorted({key.upper() for key in team_keys})
        if not keys:
            return 0
        stmt = text("DELETE FROM work_items WHERE UPPER(team_key) IN :keys").bindparams(
            bindparam("keys", expanding=True)
        )
        return self._conn.execute(stmt, {"keys": keys}).rowcount

    def count_work_items(self) -> int:
        return int(self._conn.execute(text("SELECT COUNT(*) FROM work_items")).scalar_one())

    def load_work_items(self) -> List[WorkItem]:
        rows = self._conn.execute(
            text(f"SELECT {', '.join(_WORK_ITEM_COLUMNS)} FROM work_items ORDER BY id")
        ).mappings()
        return [_row_item(row) for row in rows]


class LocalStore:
    """SQLite store for ``work_items`` and ``metrics_snapshots``, driven through SQLAlchemy.

    Every public method runs in its own transaction; ``run_in_transaction``
    groups several work-item writes so they commit together or not at all.
    """

    def __init__(self, db_url: str) -> None:
        if not db_url:
            raise StoreError("Database URL is required", phase="store")
        self.engine: Engine = self._create_engine(db_url)

    @staticmethod
    def _create_engine(db_url: str) -> Engine:
        # The DDL and upserts use SQLite syntax.
        if not db_url.startswith("sqlite"):
            scheme = db_url.split(":", 1)[0]
            raise StoreError(f"Only sqlite database URLs are supported, got {scheme!r}", phase="store")

        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, echo=False, **kwargs)

        # pysqlite defers BEGIN until the first write; emit it ourselves so the
        # reads at the start of a transaction see the same data as its writes.
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    def close(self) -> None:
        self.engine.dispose()

    def ensure_tables(self) -> None:
        try:
            with self.engine.begin() as conn:
                for stmt in _CREATE_STATEMENTS:
                    conn.execute(text(stmt))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to create tables: {exc}", phase="store") from exc

    def run_in_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        """Run ``fn`` inside one transaction; any exception rolls everything back."""
        try:
            with self.engine.begin() as conn:
                return fn(StoreTransaction(conn))
        except SQLAlchemyError as exc:
            raise StoreError(f"Store transaction failed: {exc}", phase="store") from exc

    def get_all_ids(self) -> Set[str]:
        return self.run_in_transaction(lambda tx: tx.get_all_ids())

    def upsert_work_item(self, item: WorkItem) -> bool:
        return self.run_in_transaction(lambda tx: tx.upsert_work_item(item))

    def delete_work_items_by_ids(self, ids: Iterable[str]) -> int:
        return self.run_in_transaction(lambda tx: tx.delete_work_items_by_ids(ids))

    def delete_work_items_by_team_keys(self, team_keys: Iterable[str]) -> int:
        return self.run_in_transaction(lambda tx: tx.delete_work_items_by_team_keys(team_keys))

    def count_work_items(self) -> int:
        return self.run_in_transaction(lambda tx: tx.count_work_items())

    def load_work_items(self) -> List[WorkItem]:
        """Read the whole work-item table in a single consistent transaction."""
        return self.run_in_transaction(lambda tx: tx.load_work_items())

    def append_snapshot(self, snapshot: MetricsSnapshot, metrics_json: str) -> None:
        """Append one snapshot row. There is deliberately no update counterpart."""
        schema_version = snapshot.payload.get("schemaVersion")
        params = {
            "captured_at": to_db_timestamp(snapshot.captured_at),
            "schema_version": int(schema_version) if schema_version is not None else None,
            "level": snapshot.level,
            "level_id": snapshot.level_id,
            "metrics_json": metrics_json,
        }
        self.run_in_transaction(
            lambda tx: tx.execute(
                text(
                    """
                    INSERT INTO metrics_snapshots (
                      captured_at, schema_version, level, level_id, metrics_json
                    ) VALUES (
                      :captured_at, :schema_version, :level, :level_id, :metrics_json
                    )
                    """
                ),
                params,
            )
        )
        logger.debug(
            "Appended metrics snapshot",
            extra={"level": snapshot.level, "level_id": snapshot.level_id},
        )

    def query_snapshots(
        self,
        level: str,
        level_id: Optional[str],
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[StoredSnapshot]:
        """Return snapshots for one level ordered by ``captured_at`` ascending.

        ``limit`` keeps the newest N rows; ``since``/``until`` are inclusive.
        """
        clauses = ["level = :level"]
        params: Dict[str, Any] = {"level": level}
        if level_id is None:
            clauses.append("level_id IS NULL")
        else:
            clauses.append("level_id = :level_id")
            params["level_id"] = level_id
        if since is not None:
            clauses.append("captured_at >= :since")
            params["since"] = to_db_timestamp(since)
        if until is not None:
            clauses.append("captured_at <= :until")
            params["until"] = to_db_timestamp(until)

        sql = (
            "SELECT captured_at, level, level_id, schema_version, metrics_json "
            f"FROM metrics_snapshots WHERE {' AND '.join(clauses)} "
            "ORDER BY captured_at DESC, id DESC"
        )
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)

        rows = self.run_in_transaction(lambda tx: tx.execute(text(sql), params).fetchall())
        snapshots = [
            StoredSnapshot(
                captured_at=from_db_timestamp(row[0]),
                level=row[1],
                level_id=row[2],
                schema_version=row[3],
                metrics_json=row[4],
            )
            for row in rows
        ]
        snapshots.reverse()
        return snapshots
