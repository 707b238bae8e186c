"""Command-line flags for the failover-sentinel entry point.

Every flag except --once and --env-file overrides an environment variable
loaded by failover.config; unset flags leave the environment value alone.
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build the argument parser and parse ``args`` (sys.argv when None).

    Unset overrides come back as None.
    """
    parser = argparse.ArgumentParser(
        description="Site Failover Sentinel - health-check driven Cloudflare redirect failover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single monitoring cycle and exit (no scheduler, no API server)",
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between monitoring cycles (overrides FAILOVER_POLL_INTERVAL)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides LOG_LEVEL)",
    )

    parser.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="Path to the state file (overrides FAILOVER_STATE_FILE)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Management API port (overrides FAILOVER_API_PORT)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
