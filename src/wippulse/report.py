"""Plain-text formatting for sync reports, snapshots and trends.

This module provides utilities for:
- Formatting second-based durations as ``HH:MM:SS``.
- Summarizing a ``SyncReport`` after a reconciliation run.
- Rendering the pillars of a snapshot payload, plus hygiene when present.
- Describing a ``TrendResult``, including reduced-window and no-data cases.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .models import CaptureResult, SyncReport, TrendResult


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``HH:MM:SS``.

    Args:
        seconds: Duration in seconds.

    Returns:
        ``"n/a"`` when ``seconds`` is ``None``; otherwise a rounded
        ``HH:MM:SS`` string.
    """
    if seconds is None:
        return "n/a"

    total_seconds = max(0, int(round(seconds)))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def format_sync_report(report: SyncReport) -> str:
    lines = [
        "Sync Report",
        "",
        f"   Fetched: {report.fetched_count} (projects backfilled: {report.project_count})",
        f"   Inserted: {report.inserted}",
        f"   Updated: {report.updated}",
        f"   Deleted: {report.deleted} (stale: {report.stale_deleted}, ignored teams: {report.ignored_deleted})",
        f"   Filtered (ignored teams): {report.ignored_filtered_count}",
        f"   Total stored: {report.total_stored}",
        f"   Elapsed: {format_duration(report.elapsed_seconds)}",
    ]
    return "\n".join(lines)


def format_capture_result(result: CaptureResult) -> str:
    lines = [
        f"Snapshots captured: {result.snapshots_created}",
        f"   Org: {'yes' if result.org else 'no'}",
        f"   Domains: {', '.join(result.domains) or '-'}",
        f"   Teams: {', '.join(result.teams) or '-'}",
    ]
    for target, reason in sorted(result.failures.items()):
        lines.append(f"   FAILED {target}: {reason}")
    return "\n".join(lines)


def _percent(value: Any) -> str:
    if value is None:
        return "n/a"
    return f"{value}%"


def format_snapshot_summary(payload: Optional[Dict[str, Any]]) -> str:
    """Render one snapshot payload; ``None`` renders the explicit no-data state."""
    if payload is None:
        return "No snapshots captured yet."

    level = payload.get("level", "?")
    level_id = payload.get("levelId")
    team = payload["teamHealth"]
    velocity = payload["velocityHealth"]
    productivity = payload["teamProductivity"]
    quality = payload["quality"]

    lines = [
        f"Level: {level}{f' ({level_id})' if level_id else ''}",
        f"As of: {payload.get('asOf') or 'n/a'}",
        "",
        "1) Team Health (WIP)",
        f"   Healthy workload: {_percent(team['healthyWorkloadPercent'])}"
        f" ({team['healthyEngineerCount']}/{team['totalEngineerCount']} engineers)",
        f"   WIP violations: {team['wipViolationCount']}",
        f"   Multi-project violations: {team['multiProjectViolationCount']}",
        f"   Status: {team['status']}",
        "",
        "2) Velocity Health",
        f"   On track: {_percent(velocity['onTrackPercent'])}"
        f" | At risk: {_percent(velocity['atRiskPercent'])}"
        f" | Off track: {_percent(velocity['offTrackPercent'])}",
        f"   Projects: {velocity['projectCount']}",
        f"   Status: {velocity['status']}",
        "",
        "3) Productivity",
    ]
    if productivity.get("available"):
        lines.append(f"   Percent of goal: {_percent(productivity['percentOfGoal'])}")
    else:
        lines.append(f"   Unavailable: {productivity.get('reason', 'not configured')}")
    lines.extend(
        [
            f"   Status: {productivity['status']}",
            "",
            "4) Quality",
            f"   Open bugs: {quality['openBugCount']} | Net change: {quality['netBugChange']:+d}",
            f"   Composite score: {quality['compositeScore']}",
            f"   Status: {quality['status']}",
        ]
    )
    hygiene = payload.get("linearHygiene")
    if hygiene:
        lines.extend(
            [
                "",
                "5) Linear Hygiene",
                f"   Score: {hygiene['hygieneScore']} ({hygiene['totalGaps']}/{hygiene['maxPossibleGaps']} gaps)",
                f"   Engineers with gaps: {hygiene['engineersWithGaps']}/{hygiene['totalEngineers']}"
                f" | Projects with gaps: {hygiene['projectsWithGaps']}/{hygiene['totalProjects']}",
                f"   Status: {hygiene['status']}",
            ]
        )
    return "\n".join(lines)


def format_trend(metric: str, result: TrendResult) -> str:
    if not result.has_enough_data:
        return (
            f"{metric}: not enough data for a {result.requested_days}-day trend "
            f"({result.data_points} snapshot(s) in window)"
        )

    line = (
        f"{metric}: {result.direction} {result.percent_change:+.1f} points "
        f"over {result.actual_days} day(s)"
    )
    if result.reduced_window:
        line += f" (reduced window; {result.requested_days} days requested)"
    return line
