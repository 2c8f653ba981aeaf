"""
Main entry point for guest-shutdown-watcher.

This allows running the package as a module:
    python -m guest_shutdown_watcher
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from .config import DRY_RUN, LOG_FILE, LOG_VERBOSITY, METADATA_URL, STOP_STATE_KEY
from .dispatcher import default_dispatcher
from .health_check import run_health_checks
from .logging_config import configure_logging
from .runner import serve
from .version import get_version_string

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="guest-shutdown-watcher",
        description="Run graceful shutdown scripts when the VM is about to stop",
    )
    parser.add_argument(
        "--metadata-url", default=METADATA_URL, help="Metadata server base URL"
    )
    parser.add_argument(
        "--key", default=STOP_STATE_KEY, help="Metadata key holding the stop state"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=DRY_RUN,
        help="Log the dispatch command instead of running it",
    )
    parser.add_argument(
        "--verbosity",
        default=LOG_VERBOSITY,
        type=str.upper,
        choices=["MINIMAL", "NORMAL", "VERBOSE"],
    )
    parser.add_argument("--log-file", default=LOG_FILE, help="Also log to this file")
    parser.add_argument(
        "--skip-health-checks", action="store_true", help="Skip startup checks"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {get_version_string()}"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbosity=args.verbosity, log_file=args.log_file)

    logger.info("=" * 60)
    logger.info("guest-shutdown-watcher %s - Starting up", get_version_string())
    logger.info("=" * 60)

    dispatcher = default_dispatcher(dry_run=args.dry_run)
    if not args.skip_health_checks:
        run_health_checks(dispatcher, base_url=args.metadata_url, log_file=args.log_file)

    asyncio.run(serve(dispatcher, metadata_url=args.metadata_url, key=args.key))
    logger.info("guest-shutdown-watcher exiting")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
