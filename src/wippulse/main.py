"""Application entry point: wires configuration, store, sync and metrics."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

from .cli import parse_args
from .config import load_config
from .errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    StoreError,
    SyncError,
    SyncInProgressError,
)
from .linear_client import LinearClient
from .metrics import MetricsEngine
from .report import format_capture_result, format_snapshot_summary, format_sync_report, format_trend
from .scheduler import SyncScheduler
from .store import LocalStore
from .sync import ReconciliationEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3
EXIT_REMOTE = 4
EXIT_STORE = 5
EXIT_SYNC_RUNNING = 6

_REMOTE_COMMANDS = ("sync", "schedule")


def _print_progress(message: str) -> None:
    print(message, flush=True)


def orchestrate(argv: Optional[Sequence[str]] = None) -> int:
    """Run one CLI command and map failures to process exit codes.

    Returns:
        ``0`` on success, ``2`` configuration error, ``3`` missing API key,
        ``4`` remote/API or sync failure, ``5`` store failure, ``6`` when a
        sync is already running and ``1`` for anything unexpected.
    """
    store: Optional[LocalStore] = None
    try:
        args = parse_args(argv)
        logging.basicConfig(
            level=getattr(logging, args.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        config = load_config(require_api_key=args.command in _REMOTE_COMMANDS)
        store = LocalStore(config.database_url)
        store.ensure_tables()
        metrics = MetricsEngine(store, config)

        if args.command == "sync":
            ignored = config.ignored_team_keys | frozenset(key.upper() for key in args.ignore_team)
            engine = ReconciliationEngine(LinearClient(config=config), store, progress=_print_progress)
            report = engine.synchronize(ignored)
            print(format_sync_report(report))
            if args.capture:
                print(format_capture_result(metrics.capture_all()))

        elif args.command == "capture":
            print(format_capture_result(metrics.capture_all()))

        elif args.command == "show":
            print(format_snapshot_summary(metrics.latest_snapshot(args.level, args.level_id)))

        elif args.command == "trend":
            result = metrics.compute_trend(args.level, args.level_id, args.metric, args.days)
            print(format_trend(args.metric, result))

        elif args.command == "schedule":
            engine = ReconciliationEngine(LinearClient(config=config), store)
            scheduler = SyncScheduler(
                engine,
                metrics,
                ignored_team_keys=config.ignored_team_keys,
                interval_seconds=args.interval or config.sync_interval_seconds,
            )
            scheduler.start()
            try:
                scheduler.wait()
            except KeyboardInterrupt:
                print("Stopping scheduler...")
            finally:
                scheduler.stop()

        return EXIT_OK
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except AuthenticationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_AUTH
    except SyncInProgressError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_SYNC_RUNNING
    except (ApiError, SyncError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_REMOTE
    except StoreError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_STORE
    except Exception:
        logger.exception("Unexpected failure")
        return EXIT_UNEXPECTED
    finally:
        if store is not None:
            store.close()


def main() -> None:
    sys.exit(orchestrate())


if __name__ == "__main__":
    main()
