"""Shared status bands, health ordering and classification helpers."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

from .config import Thresholds
from .models import WorkItem

CLOSED_STATE_TYPES = frozenset({"completed", "canceled"})
BUG_LABEL_MARKER = "bug"


class PillarStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNAVAILABLE = "unavailable"


class ProjectHealth(str, Enum):
    ON_TRACK = "onTrack"
    AT_RISK = "atRisk"
    OFF_TRACK = "offTrack"

    @property
    def severity(self) -> int:
        return _HEALTH_SEVERITY[self]


_HEALTH_SEVERITY = {
    ProjectHealth.ON_TRACK: 0,
    ProjectHealth.AT_RISK: 1,
    ProjectHealth.OFF_TRACK: 2,
}


def _band(score: float, healthy: float, warning: float) -> PillarStatus:
    if score >= healthy:
        return PillarStatus.HEALTHY
    if score >= warning:
        return PillarStatus.WARNING
    return PillarStatus.CRITICAL


def status_for_score(score: float, thresholds: Thresholds) -> PillarStatus:
    """Map a 0-100 score to a status band; the same bands apply at every level."""
    return _band(score, thresholds.healthy_threshold, thresholds.warning_threshold)


def hygiene_status(score: float, thresholds: Thresholds) -> PillarStatus:
    """Hygiene uses its own, stricter bands (90/75 by default)."""
    return _band(score, thresholds.hygiene_healthy_threshold, thresholds.hygiene_warning_threshold)


def worse_health(first: ProjectHealth, second: ProjectHealth) -> ProjectHealth:
    """Return the more severe of two health signals (offTrack > atRisk > onTrack)."""
    return first if first.severity >= second.severity else second


def normalize_health(raw: Optional[str]) -> Optional[ProjectHealth]:
    """Normalize Linear's free-form health strings such as ``"At risk"`` or ``"off_track"``.

    Returns ``None`` when no health was reported or the value is unrecognized.
    """
    if not raw:
        return None
    lowered = raw.strip().lower().replace("_", "").replace("-", "").replace(" ", "")
    if "off" in lowered:
        return ProjectHealth.OFF_TRACK
    if "risk" in lowered:
        return ProjectHealth.AT_RISK
    if "on" in lowered or "track" in lowered:
        return ProjectHealth.ON_TRACK
    return None


def is_bug(item: WorkItem) -> bool:
    """Heuristic: an item is a bug when any label contains ``bug`` (case-insensitive).

    Labels like ``"Debugging"`` also match; the quality pillar accepts that
    imprecision rather than maintaining a label allow-list.
    """
    return any(BUG_LABEL_MARKER in label.lower() for label in item.labels)


def is_open(item: WorkItem) -> bool:
    return item.state.type not in CLOSED_STATE_TYPES


def is_started(item: WorkItem) -> bool:
    return item.state.type == "started"


def round_to(value: float, digits: int = 1) -> float:
    """Round half away from zero so payload values do not depend on banker's rounding."""
    factor = 10 ** digits
    scaled = abs(value) * factor
    rounded = int(scaled + 0.5) / factor
    return rounded if value >= 0 else -rounded


def percent(part: int, whole: int, empty: float = 0.0) -> float:
    if whole <= 0:
        return empty
    return round_to(part / whole * 100)


def team_keys_of(items: Iterable[WorkItem]) -> list:
    return sorted({item.team.key.upper() for item in items})
