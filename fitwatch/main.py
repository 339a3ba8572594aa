"""
FitWatch - command line entry point.

Usage:
    fitwatch                  # deliver backlog, scan, then watch until stopped
    fitwatch --once           # deliver backlog, scan existing files, exit
    fitwatch --retry-failed   # re-queue failed deliveries and retry them
    fitwatch --stats          # print ledger statistics as JSON
    fitwatch --list 20        # print the 20 most recent activities
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from fitwatch import __version__
from fitwatch.domains.activity_sync.pipeline import SyncPipeline
from fitwatch.models.errors import ConfigurationError, LedgerError
from fitwatch.utils.config import get_settings
from fitwatch.utils.ledger import close_ledger, get_ledger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None):
    """Route loguru output to stdout and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)
    if log_file:
        logger.add(
            str(Path(log_file).expanduser()),
            format=LOG_FORMAT,
            level=level,
            rotation="10 MB",
            retention=5,
            colorize=False,
        )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        prog="fitwatch",
        description="Watch local activity files and sync them to remote destinations.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Sync existing files and exit (no watch).",
    )
    mode.add_argument(
        "--retry-failed",
        action="store_true",
        help="Re-queue failed deliveries under the retry ceiling, retry them, and exit.",
    )
    mode.add_argument(
        "--stats",
        action="store_true",
        help="Print ledger statistics as JSON and exit.",
    )
    mode.add_argument(
        "--list",
        type=int,
        metavar="N",
        default=None,
        help="Print the N most recent activities in the ledger and exit.",
    )
    parser.add_argument(
        "--watch-dir",
        type=Path,
        action="append",
        default=[],
        help="Directory to watch (can be repeated; overrides FITWATCH_WATCH_DIRS).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI."""

    args = parse_args(argv)
    settings = get_settings()

    if args.watch_dir:
        settings = settings.model_copy(
            update={"watch_dirs": ",".join(str(p) for p in args.watch_dir)}
        )

    configure_logging("DEBUG" if args.verbose else settings.log_level, settings.log_file)
    logger.info(f"FitWatch {__version__}")

    if args.stats or args.list is not None:
        try:
            ledger = get_ledger()
        except LedgerError as e:
            logger.error(f"Setup failed: {e}")
            return 1
        if args.stats:
            print(ledger.stats().model_dump_json(indent=2))
        else:
            for artifact in ledger.list_artifacts(args.list):
                started = artifact.metadata.started_at.isoformat() if artifact.metadata.started_at else "-"
                print(f"{started}  {artifact.metadata.activity_type or '-':<12}  {artifact.path}")
        close_ledger()
        return 0

    stop_event = threading.Event()
    pipeline = SyncPipeline.from_settings(settings, stop_event=stop_event)

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        if args.once:
            stats = pipeline.run_once()
            logger.info(f"Done: {stats.total_artifacts} artifacts, {stats.total_deliveries} deliveries")
        elif args.retry_failed:
            pipeline.start()
            counts = pipeline.retry_sweep()
            logger.info(f"Retry sweep finished: {counts}")
        else:
            pipeline.run()
    except (ConfigurationError, LedgerError) as e:
        logger.error(f"Setup failed: {e}")
        return 1

    logger.info("FitWatch stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
