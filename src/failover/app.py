"""Core application runner for the failover sentinel.

This module coordinates:
- Management API server lifecycle
- Cycle scheduler lifecycle
- Single-cycle mode execution
- Shutdown on SIGINT/SIGTERM

API-less Operation Mode:
    Monitoring and failover do not depend on the management API. When the
    API server cannot start (port in use, import errors, or anything else),
    the failure is logged as a warning and the scheduler keeps running so the
    site stays protected.
"""

from __future__ import annotations

import argparse

from failover.api_server import ApiServer
from failover.bootstrap import BootstrapContext, bootstrap
from failover.cli import parse_args
from failover.engine import CycleOutcome
from failover.logging import get_logger
from failover.shutdown import ShutdownHandler, create_shutdown_handler

logger = get_logger(__name__)

# Outcomes that make --once exit non-zero
FAILED_ONCE_OUTCOMES = frozenset({CycleOutcome.API_ERROR, CycleOutcome.AUTH_FAILED})


def start_api_server(context: BootstrapContext) -> ApiServer | None:
    """Start the management API in a background thread.

    Args:
        context: Bootstrap context with configuration and components.

    Returns:
        ApiServer if started successfully, None otherwise.
    """
    config = context.config
    server_extra = {"host": config.api_host, "port": config.api_port}

    try:
        from failover.api import create_app

        logger.info("Starting API server on %s:%s", config.api_host, config.api_port)
        api_app = create_app(config, context.store, context.engine, context.rule_client)
        server = ApiServer(host=config.api_host, port=config.api_port)
        server.start(api_app)
        return server
    except ImportError as e:
        logger.warning(
            "API server startup failed: dependencies not available. "
            "Monitoring continues without the API. Error: %s",
            e,
            extra=server_extra,
        )
        return None
    except OSError as e:
        logger.warning(
            "API server startup failed: network/OS error. "
            "Monitoring continues without the API. Error: %s",
            e,
            extra=server_extra,
        )
        return None
    except RuntimeError as e:
        logger.warning(
            "API server startup failed: runtime error. "
            "Monitoring continues without the API. Error: %s",
            e,
            extra=server_extra,
        )
        return None
    except Exception as e:
        # The API is optional; monitoring must keep running whatever happens here.
        logger.warning(
            "API server startup failed: unexpected error (%s). "
            "Monitoring continues without the API. Error: %s",
            type(e).__name__,
            e,
            extra={**server_extra, "error_type": type(e).__name__},
        )
        return None


def run_once_mode(context: BootstrapContext) -> int:
    """Run a single decision cycle and exit.

    Args:
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code: 0 for success, 1 if the cycle failed or a rule change failed.
    """
    logger.info("Running single monitoring cycle (--once mode)")
    context.dispatcher.start()
    try:
        report = context.scheduler.run_once(timeout=context.config.shutdown_timeout)
    finally:
        context.dispatcher.shutdown()

    if report is None:
        logger.error("Monitoring cycle failed")
        return 1
    logger.info("Cycle completed with outcome %s", report.outcome.name)
    return 1 if report.outcome in FAILED_ONCE_OUTCOMES else 0


def run_continuous_mode(context: BootstrapContext, shutdown: ShutdownHandler) -> int:
    """Run the scheduler until shutdown is requested.

    Args:
        context: Bootstrap context with all dependencies.
        shutdown: Handler whose wait() blocks until SIGINT/SIGTERM.

    Returns:
        Exit code: 0 if every in-flight cycle settled, 1 otherwise.
    """
    context.scheduler.start()
    shutdown.wait()

    logger.info(
        "Waiting up to %ss for in-flight cycles to finish",
        context.config.shutdown_timeout,
    )
    settled = context.scheduler.stop(timeout=context.config.shutdown_timeout)
    if not settled:
        logger.warning("Shutdown timed out with cycles still in flight")
        return 1
    return 0


def run_application(parsed: argparse.Namespace, context: BootstrapContext) -> int:
    """Run the main application with the given context.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    if parsed.once:
        try:
            return run_once_mode(context)
        finally:
            context.close()

    shutdown = create_shutdown_handler()
    api_server = start_api_server(context)

    try:
        return run_continuous_mode(context, shutdown)
    finally:
        if api_server is not None:
            api_server.shutdown()
        context.close()
        logger.info("Failover sentinel stopped")


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    context = bootstrap(parsed)
    if context is None:
        return 1

    return run_application(parsed, context)


__all__ = [
    "main",
    "run_application",
    "run_continuous_mode",
    "run_once_mode",
    "start_api_server",
]


if __name__ == "__main__":
    import sys
    sys.exit(main())
