"""certwatch: scan CT logs once, store matches, persist progress."""

import asyncio
import logging
import sys
from argparse import ArgumentParser
from typing import List, Optional

from .config import LOG_LEVELS, Settings
from .errors import FatalError, SettingsError
from .monitor import CertMonitor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="certwatch",
        description="Scan Certificate Transparency logs for new certificates matching configured rules.",
    )
    parser.add_argument(
        "--bucket",
        help="S3 bucket name, or a local directory (path or file:// url), holding "
        "cert-monitor.toml, log-state.json and certs/ (default: $CERT_MONITOR_BUCKET)",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        help="Max logs synced at once, 0 for no limit (default: $CERTWATCH_MAX_CONCURRENCY or 0)",
    )
    parser.add_argument(
        "--max-entries",
        type=int,
        help="Max entries fetched per log in one run, 0 for no limit "
        "(default: $CERTWATCH_MAX_ENTRIES or 0)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="HTTP timeout in seconds (default: $CERTWATCH_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        help="Logging level (default: $CERTWATCH_LOG_LEVEL or INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run one scan. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env(
            bucket=args.bucket,
            max_concurrency=args.max_concurrency,
            max_entries=args.max_entries,
            timeout=args.timeout,
            log_level=args.log_level,
        )
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    monitor = CertMonitor.from_settings(settings)
    try:
        asyncio.run(monitor.run())
    except FatalError as e:
        logger.error(f"Run failed: {e}")
        return EXIT_FATAL

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
