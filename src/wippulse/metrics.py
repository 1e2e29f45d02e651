"""Metrics aggregation engine: pillar snapshots per level and trend queries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple, Union

from .config import Config
from .engineers import compute_engineer_aggregates, project_summaries
from .errors import ConfigurationError, PulseError, SnapshotParseError
from .models import CaptureResult, MetricsSnapshot, TrendResult, WorkItem
from .pillars import (
    hygiene_health,
    productivity_health,
    quality_health,
    team_health,
    velocity_health,
)
from .policy import team_keys_of
from .productivity import StaticThroughputSource, ThroughputSource, UnconfiguredThroughputSource
from .snapshots import (
    METRIC_EXTRACTORS,
    MetricExtractor,
    build_payload,
    encode_payload,
    parse_payload,
)
from .store import LocalStore
from .trajectory import ThroughputTrajectoryClassifier, TrajectoryClassifier
from .trends import calculate_trend, no_data

logger = logging.getLogger(__name__)

LEVELS = ("org", "domain", "team")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricsEngine:
    """Computes per-level pillar snapshots and answers trend queries.

    Pillars are computed from one consistent read of the ``work_items`` table.
    The reference time for ages and windows is the newest ``updated_at`` in the
    table rather than the wall clock, so two computations with no writes in
    between produce identical pillar values.
    """

    def __init__(
        self,
        store: LocalStore,
        config: Config,
        throughput_source: Optional[ThroughputSource] = None,
        classifier: Optional[TrajectoryClassifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._thresholds = config.thresholds
        if throughput_source is None:
            throughput_source = (
                StaticThroughputSource(config.true_throughput)
                if config.true_throughput
                else UnconfiguredThroughputSource()
            )
        self._throughput = throughput_source
        self._classifier = classifier or ThroughputTrajectoryClassifier()
        self._clock = clock or _utc_now

    def _scope_keys(self, level: str, level_id: Optional[str]) -> Optional[FrozenSet[str]]:
        """Team keys a level covers; ``None`` means every team (org level)."""
        if level not in LEVELS:
            raise ConfigurationError(f"Unknown metrics level '{level}'", phase="metrics")
        if level == "org":
            if level_id is not None:
                raise ConfigurationError("The org level does not take a level id", phase="metrics")
            return None
        if not level_id:
            raise ConfigurationError(f"Level '{level}' requires a level id", phase="metrics")
        if level == "team":
            return frozenset({level_id.upper()})

        keys = self._config.teams_for_domain(level_id)
        if not keys:
            raise ConfigurationError(f"Domain '{level_id}' has no mapped teams", phase="metrics")
        return keys

    def _build(
        self,
        items: Sequence[WorkItem],
        level: str,
        level_id: Optional[str],
        captured_at: datetime,
    ) -> MetricsSnapshot:
        keys = self._scope_keys(level, level_id)
        if keys is None:
            scoped = list(items)
        else:
            scoped = [item for item in items if item.team.key.upper() in keys]

        as_of = max((item.updated_at for item in items), default=None)
        reference = as_of or captured_at

        aggregates = compute_engineer_aggregates(scoped, self._thresholds, reference)
        # Projects keep all of their items so trajectories see the whole project.
        projects = [
            project
            for project in project_summaries(items)
            if keys is None or keys.intersection(project.team_keys)
        ]

        payload = build_payload(
            level=level,
            level_id=level_id,
            as_of=as_of,
            thresholds=self._thresholds,
            team_health=team_health(aggregates, self._thresholds),
            velocity_health=velocity_health(projects, self._classifier, self._thresholds, reference),
            productivity=productivity_health(
                self._throughput, level, level_id, len(aggregates), self._thresholds
            ),
            quality=quality_health(scoped, len(aggregates), self._thresholds, reference),
            hygiene=hygiene_health(aggregates, projects, self._classifier, self._thresholds, reference),
            metadata={
                "workItemCount": len(scoped),
                "engineerCount": len(aggregates),
                "projectCount": len(projects),
                "teamKeys": team_keys_of(scoped),
            },
        )
        return MetricsSnapshot(captured_at=captured_at, level=level, level_id=level_id, payload=payload)

    def build_snapshot(self, level: str, level_id: Optional[str] = None) -> MetricsSnapshot:
        """Compute a snapshot for one level without persisting it."""
        return self._build(self._store.load_work_items(), level, level_id, self._clock())

    def _persist(self, snapshot: MetricsSnapshot) -> MetricsSnapshot:
        self._store.append_snapshot(snapshot, encode_payload(snapshot.payload))
        logger.info(
            "Captured metrics snapshot",
            extra={"level": snapshot.level, "level_id": snapshot.level_id},
        )
        return snapshot

    def compute_snapshot(self, level: str, level_id: Optional[str] = None) -> MetricsSnapshot:
        """Compute and append a snapshot for one level."""
        return self._persist(self.build_snapshot(level, level_id))

    def capture_targets(self, items: Sequence[WorkItem]) -> List[Tuple[str, Optional[str]]]:
        ignored = self._config.ignored_team_keys
        team_keys = sorted({item.team.key.upper() for item in items} - ignored)
        return (
            [("org", None)]
            + [("domain", domain) for domain in self._config.domains()]
            + [("team", key) for key in team_keys]
        )

    def capture_all(self) -> CaptureResult:
        """Capture org, every configured domain and every stored team.

        All levels share one read of the work-item table and one capture time.
        A failing level is logged and recorded without stopping the others.
        """
        items = self._store.load_work_items()
        captured_at = self._clock()
        result = CaptureResult()

        for level, level_id in self.capture_targets(items):
            label = level if level_id is None else f"{level}:{level_id}"
            try:
                self._persist(self._build(items, level, level_id, captured_at))
            except PulseError as exc:
                logger.error("Snapshot capture failed", extra={"target": label, "error": str(exc)})
                result.failures[label] = str(exc)
                continue

            result.snapshots_created += 1
            if level == "org":
                result.org = True
            elif level == "domain":
                result.domains.append(level_id)
            else:
                result.teams.append(level_id)

        return result

    def compute_trend(
        self,
        level: str,
        level_id: Optional[str],
        extractor: Union[str, MetricExtractor],
        window_days: int,
    ) -> TrendResult:
        """Trend of one metric over the last ``window_days`` of snapshots.

        Unparsable snapshots are skipped. With no usable snapshots the result
        has ``has_enough_data=False`` and ``data_points=0``.
        """
        if isinstance(extractor, str):
            try:
                extractor = METRIC_EXTRACTORS[extractor]
            except KeyError:
                raise ConfigurationError(f"Unknown trend metric '{extractor}'", phase="metrics") from None
        if window_days < 1:
            raise ConfigurationError("Trend window must be at least one day", phase="metrics")

        now = self._clock()
        rows = self._store.query_snapshots(
            level, level_id, since=now - timedelta(days=window_days), until=now
        )
        if not rows:
            return no_data(window_days)

        points = []
        for row in rows:
            try:
                points.append((row.captured_at, parse_payload(row.metrics_json)))
            except SnapshotParseError as exc:
                logger.warning(
                    "Skipping unparsable snapshot",
                    extra={"level": level, "level_id": level_id, "captured_at": str(row.captured_at), "error": str(exc)},
                )

        return calculate_trend(
            points,
            extractor,
            window_days,
            now,
            flat_threshold=self._thresholds.trend_flat_threshold,
        )

    def latest_snapshot(self, level: str, level_id: Optional[str] = None) -> Optional[dict]:
        """Return the newest parsable payload for a level, or ``None`` when there is none."""
        for row in reversed(self._store.query_snapshots(level, level_id)):
            try:
                return parse_payload(row.metrics_json)
            except SnapshotParseError as exc:
                logger.warning(
                    "Skipping unparsable snapshot",
                    extra={"level": level, "level_id": level_id, "error": str(exc)},
                )
        return None
