"""Command-line argument parsing for wip-pulse."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .metrics import LEVELS
from .snapshots import METRIC_EXTRACTORS


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments; ``command`` names the selected subcommand.
    """
    parser = argparse.ArgumentParser(
        prog="wip-pulse",
        description=(
            "Sync in-progress Linear work into a local store and track WIP, "
            "velocity, productivity and quality metrics over time."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Reconcile the local store with Linear.")
    sync_parser.add_argument(
        "--ignore-team",
        action="append",
        default=[],
        metavar="KEY",
        help="Team key to exclude (repeatable; added to IGNORED_TEAM_KEYS).",
    )
    sync_parser.add_argument(
        "--capture",
        action="store_true",
        help="Capture metrics snapshots for every level after a successful sync.",
    )

    subparsers.add_parser("capture", help="Capture metrics snapshots for every level.")

    show_parser = subparsers.add_parser("show", help="Show the latest snapshot for a level.")
    show_parser.add_argument("--level", choices=LEVELS, default="org")
    show_parser.add_argument("--level-id", default=None, help="Domain name or team key.")

    trend_parser = subparsers.add_parser("trend", help="Show a metric trend for a level.")
    trend_parser.add_argument("--level", choices=LEVELS, default="org")
    trend_parser.add_argument("--level-id", default=None, help="Domain name or team key.")
    trend_parser.add_argument("--metric", choices=sorted(METRIC_EXTRACTORS), required=True)
    trend_parser.add_argument(
        "--days",
        type=_positive_int,
        default=7,
        help="Trend window in days (default: 7).",
    )

    schedule_parser = subparsers.add_parser(
        "schedule", help="Run sync and capture on a fixed interval until interrupted."
    )
    schedule_parser.add_argument(
        "--interval",
        type=_positive_int,
        default=None,
        help="Seconds between runs (default: SYNC_INTERVAL_SECONDS or 600).",
    )

    return parser.parse_args(argv)
