"""Versioned snapshot payloads and the scalar extractors used by trends."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .config import Thresholds
from .errors import SnapshotParseError
from .store import to_db_timestamp

SCHEMA_VERSION = 1

PILLAR_SECTIONS = ("teamHealth", "velocityHealth", "teamProductivity", "quality")

# Added after the first v1 snapshots were written, so it may be absent.
OPTIONAL_SECTIONS = ("linearHygiene",)

MetricExtractor = Callable[[Dict[str, Any]], Optional[float]]


def build_payload(
    level: str,
    level_id: Optional[str],
    as_of: Optional[datetime],
    thresholds: Thresholds,
    team_health: Dict[str, Any],
    velocity_health: Dict[str, Any],
    productivity: Dict[str, Any],
    quality: Dict[str, Any],
    metadata: Dict[str, Any],
    hygiene: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload = {
        "schemaVersion": SCHEMA_VERSION,
        "level": level,
        "levelId": level_id,
        "asOf": to_db_timestamp(as_of),
        "thresholds": thresholds.as_dict(),
        "teamHealth": team_health,
        "velocityHealth": velocity_health,
        "teamProductivity": productivity,
        "quality": quality,
        "metadata": metadata,
    }
    if hygiene is not None:
        payload["linearHygiene"] = hygiene
    return payload


def encode_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True)


def _parse_v1(payload: Dict[str, Any]) -> Dict[str, Any]:
    for section in PILLAR_SECTIONS:
        if not isinstance(payload.get(section), dict):
            raise SnapshotParseError(f"Snapshot payload is missing the '{section}' section")
        if "status" not in payload[section]:
            raise SnapshotParseError(f"Snapshot section '{section}' has no status")
    for section in OPTIONAL_SECTIONS:
        if section in payload and not (
            isinstance(payload[section], dict) and "status" in payload[section]
        ):
            raise SnapshotParseError(f"Snapshot section '{section}' is malformed")
    return payload


_PARSERS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: _parse_v1,
}


def parse_payload(text: str) -> Dict[str, Any]:
    """Decode a stored ``metrics_json`` value, dispatching on ``schemaVersion``.

    Raises:
        SnapshotParseError: If the text is not a JSON object, the version is
            unknown, or a pillar section is malformed.
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise SnapshotParseError("Snapshot payload is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise SnapshotParseError("Snapshot payload must be a JSON object")

    version = payload.get("schemaVersion")
    parser = _PARSERS.get(version) if isinstance(version, int) else None
    if parser is None:
        raise SnapshotParseError(f"Unsupported snapshot schemaVersion: {version!r}")
    return parser(payload)


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _wip_health(payload: Dict[str, Any]) -> Optional[float]:
    return _numeric(payload.get("teamHealth", {}).get("healthyWorkloadPercent"))


def _project_health(payload: Dict[str, Any]) -> Optional[float]:
    return _numeric(payload.get("velocityHealth", {}).get("onTrackPercent"))


def _productivity(payload: Dict[str, Any]) -> Optional[float]:
    section = payload.get("teamProductivity", {})
    if not section.get("available"):
        return None
    return _numeric(section.get("percentOfGoal"))


def _quality(payload: Dict[str, Any]) -> Optional[float]:
    return _numeric(payload.get("quality", {}).get("compositeScore"))


def _hygiene(payload: Dict[str, Any]) -> Optional[float]:
    return _numeric(payload.get("linearHygiene", {}).get("hygieneScore"))


METRIC_EXTRACTORS: Dict[str, MetricExtractor] = {
    "wip_health": _wip_health,
    "project_health": _project_health,
    "productivity": _productivity,
    "quality": _quality,
    "hygiene": _hygiene,
}
