"""Signal-driven shutdown for continuous mode.

SIGINT and SIGTERM only set an event; the main thread, parked in
ShutdownHandler.wait(), then stops the scheduler and the API server itself.
Nothing heavier than logging runs inside the signal handler.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from types import FrameType

from failover.logging import get_logger

logger = get_logger(__name__)

# Signals that end continuous mode
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """One-shot stop flag shared by signal handlers and application code.

    ``on_shutdown`` fires once, on the first request; later requests are
    no-ops.
    """

    def __init__(self, on_shutdown: Callable[[], None] | None = None) -> None:
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._callback = on_shutdown

    @property
    def shutdown_requested(self) -> bool:
        """Whether a stop has been requested."""
        return self._stop.is_set()

    def request_shutdown(self) -> None:
        """Set the stop flag and run the callback if this is the first request."""
        with self._lock:
            if self._stop.is_set():
                logger.debug("Ignoring repeated shutdown request")
                return
            self._stop.set()
        logger.info("Stopping failover monitor")
        if self._callback is not None:
            self._callback()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a stop is requested.

        Args:
            timeout: Seconds to wait; None waits forever.

        Returns:
            False if the timeout elapsed first.
        """
        return self._stop.wait(timeout)

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """Signal handler entry point."""
        logger.info("Caught %s", signal.Signals(signum).name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to handle_signal."""
        for signum in SHUTDOWN_SIGNALS:
            signal.signal(signum, self.handle_signal)


def create_shutdown_handler(on_shutdown: Callable[[], None] | None = None) -> ShutdownHandler:
    """Build a ShutdownHandler with its signal handlers already installed.

    Must be called from the main thread.
    """
    handler = ShutdownHandler(on_shutdown)
    handler.install_signal_handlers()
    return handler


__all__ = [
    "SHUTDOWN_SIGNALS",
    "ShutdownHandler",
    "create_shutdown_handler",
]
