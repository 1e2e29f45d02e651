"""Reconciliation of the local work-item table against the remote source."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol

from .errors import ApiError, PulseError, RemoteConnectionError, SyncInProgressError
from .models import SyncReport, WorkItem
from .store import LocalStore, StoreTransaction

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]

STARTED_STATE_TYPE = "started"


class WorkItemSource(Protocol):
    """Remote paginator the engine reads from; ``LinearClient`` implements it."""

    def test_connection(self) -> bool:
        ...

    def fetch_by_state_type(
        self,
        state_type: str,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[WorkItem]:
        ...

    def fetch_by_project_ids(
        self,
        project_ids: Iterable[str],
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> List[WorkItem]:
        ...


def dedupe_by_id(*batches: Iterable[WorkItem]) -> List[WorkItem]:
    """Merge batches by id keeping the first occurrence, in batch order."""
    seen: Dict[str, WorkItem] = {}
    for batch in batches:
        for item in batch:
            if item.id not in seen:
                seen[item.id] = item
    return list(seen.values())


def _tag_phase(exc: PulseError, phase: str) -> None:
    if exc.phase is None:
        exc.phase = phase


class ReconciliationEngine:
    """Brings the ``work_items`` table into exact agreement with the remote scope.

    A sync fetches every ``started`` item (phase A), drops ignored teams, then
    backfills every item of each referenced project (phase B). The deduplicated
    union is written in one transaction together with the stale and ignored
    deletions, so a failed run leaves the store as it was.

    Only one sync runs at a time per engine instance.
    """

    def __init__(
        self,
        source: WorkItemSource,
        store: LocalStore,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        self._source = source
        self._store = store
        self._progress = progress
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _emit(self, message: str) -> None:
        """Forward a progress line to the sink; sink failures never fail a sync."""
        logger.debug(message)
        if self._progress is None:
            return
        try:
            self._progress(message)
        except Exception:  # noqa: BLE001
            logger.warning("Progress sink raised; continuing sync", exc_info=True)

    def synchronize(
        self,
        ignored_team_keys: Iterable[str] = frozenset(),
        wait: bool = False,
    ) -> SyncReport:
        """Run one reconciliation.

        Args:
            ignored_team_keys: Team keys excluded from the store entirely.
            wait: Block until an in-flight sync finishes instead of rejecting.

        Raises:
            SyncInProgressError: If another sync holds the engine and ``wait`` is false.
            RemoteConnectionError: If the connectivity check fails.
            PaginationLimitExceeded: If a fetch phase hits the page cap.
            ApiError: If a fetch phase fails.
            StoreError: If the transaction fails; it is rolled back.
        """
        if not self._lock.acquire(blocking=wait):
            raise SyncInProgressError("A sync is already running", phase="connect")
        try:
            ignored = frozenset(key.strip().upper() for key in ignored_team_keys if key.strip())
            return self._run(ignored)
        finally:
            self._lock.release()

    def _check_connection(self) -> None:
        self._emit("Checking connection to remote source...")
        try:
            reachable = self._source.test_connection()
        except ApiError as exc:
            raise RemoteConnectionError(
                f"Remote source is unreachable: {exc}", phase="connect"
            ) from exc
        if not reachable:
            raise RemoteConnectionError("Remote source is unreachable", phase="connect")

    def _fetch_started(self) -> List[WorkItem]:
        self._emit("Fetching started work items...")

        def _on_progress(count: int, page_delta: int) -> None:
            self._emit(f"Fetched {count} started work items (+{page_delta})")

        try:
            return self._source.fetch_by_state_type(STARTED_STATE_TYPE, _on_progress)
        except PulseError as exc:
            _tag_phase(exc, "started")
            raise

    def _fetch_projects(self, project_ids: List[str]) -> List[WorkItem]:
        if not project_ids:
            return []
        self._emit(f"Backfilling work items for {len(project_ids)} projects...")

        def _on_progress(count: int) -> None:
            self._emit(f"Fetched {count} project work items")

        try:
            return self._source.fetch_by_project_ids(project_ids, _on_progress)
        except PulseError as exc:
            _tag_phase(exc, "projects")
            raise

    def _run(self, ignored: FrozenSet[str]) -> SyncReport:
        started_clock = time.monotonic()
        self._check_connection()

        started_items = self._fetch_started()
        kept_started = [item for item in started_items if item.team.key.upper() not in ignored]
        ignored_ids = {item.id for item in started_items if item.team.key.upper() in ignored}
        if ignored_ids:
            self._emit(f"Filtered {len(ignored_ids)} work items from ignored teams")

        project_ids = sorted({item.project.id for item in kept_started if item.project is not None})
        project_items = self._fetch_projects(project_ids)
        kept_projects = [item for item in project_items if item.team.key.upper() not in ignored]
        # Counted by id: an ignored item can come back in both phases.
        ignored_ids.update(item.id for item in project_items if item.team.key.upper() in ignored)
        ignored_filtered = len(ignored_ids)

        fetched = dedupe_by_id(kept_started, kept_projects)
        self._emit(f"Collected {len(fetched)} unique work items")

        if not fetched:
            self._emit("Remote source returned no work items; nothing to sync")
            report = SyncReport(
                ignored_filtered_count=ignored_filtered,
                total_stored=self._store.count_work_items(),
                elapsed_seconds=time.monotonic() - started_clock,
                fetched_count=0,
                project_count=len(project_ids),
            )
            logger.info("Sync finished with no remote work items", extra={"ignored": ignored_filtered})
            return report

        fetched_ids = {item.id for item in fetched}

        def _apply(tx: StoreTransaction) -> SyncReport:
            existing_ids = tx.get_all_ids()
            inserted = updated = 0
            for item in fetched:
                if tx.upsert_work_item(item):
                    inserted += 1
                else:
                    updated += 1
            stale_deleted = tx.delete_work_items_by_ids(existing_ids - fetched_ids)
            ignored_deleted = tx.delete_work_items_by_team_keys(ignored)
            return SyncReport(
                inserted=inserted,
                updated=updated,
                deleted=stale_deleted + ignored_deleted,
                ignored_filtered_count=ignored_filtered,
                total_stored=tx.count_work_items(),
                fetched_count=len(fetched),
                project_count=len(project_ids),
                stale_deleted=stale_deleted,
                ignored_deleted=ignored_deleted,
            )

        self._emit(f"Writing {len(fetched)} work items to the store...")
        try:
            report = self._store.run_in_transaction(_apply)
        except PulseError as exc:
            _tag_phase(exc, "store")
            raise

        report.elapsed_seconds = time.monotonic() - started_clock
        self._emit(
            f"Sync complete: {report.inserted} inserted, {report.updated} updated, "
            f"{report.deleted} deleted, {report.total_stored} stored"
        )
        logger.info(
            "Sync finished",
            extra={
                "inserted": report.inserted,
                "updated": report.updated,
                "deleted": report.deleted,
                "ignored_filtered": report.ignored_filtered_count,
                "total_stored": report.total_stored,
            },
        )
        return report
