"""Fixed-interval background runner for sync followed by snapshot capture."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from .errors import PulseError, SyncInProgressError
from .metrics import MetricsEngine
from .models import CaptureResult, SyncReport
from .sync import ReconciliationEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs ``synchronize`` then ``capture_all`` every ``interval_seconds``.

    A tick that finds a sync already in flight is skipped rather than queued.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        metrics: MetricsEngine,
        ignored_team_keys: Iterable[str] = frozenset(),
        interval_seconds: int = 600,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._engine = engine
        self._metrics = metrics
        self._ignored_team_keys = frozenset(ignored_team_keys)
        self._interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[SyncReport]:
        """Run one sync and capture. Returns ``None`` when the tick was skipped or failed."""
        try:
            report = self._engine.synchronize(self._ignored_team_keys)
        except SyncInProgressError:
            logger.info("Skipping scheduled sync; a sync is already running")
            return None
        except PulseError as exc:
            logger.error("Scheduled sync failed", extra={"phase": exc.phase, "error": str(exc)})
            return None

        try:
            capture: CaptureResult = self._metrics.capture_all()
        except PulseError as exc:
            logger.error("Scheduled capture failed", extra={"phase": exc.phase, "error": str(exc)})
            return report

        logger.info(
            "Scheduled run finished",
            extra={
                "inserted": report.inserted,
                "updated": report.updated,
                "deleted": report.deleted,
                "snapshots": capture.snapshots_created,
            },
        )
        return report

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001
                # The thread must outlive a bad tick or no later sync ever runs.
                logger.exception("Scheduled run raised an unexpected error")
            self._stop_event.wait(self._interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="wip-pulse-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started", extra={"interval_seconds": self._interval_seconds})

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``stop`` is called; returns whether it was."""
        return self._stop_event.wait(timeout)
