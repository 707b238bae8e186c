"""Timer and fire-and-forget dispatch of decision cycles.

Component Boundaries
--------------------
CycleDispatcher owns the thread pool that runs cycles and tracks their
futures so shutdown can wait for in-flight cycles to settle. It is the only
component that touches ``concurrent.futures.ThreadPoolExecutor`` for cycles.

CycleScheduler owns the timer thread. Each tick dispatches one cycle and
returns immediately; the timer never waits for a cycle to finish. A slow
cycle (for example one retrying the rule API) can therefore overlap the next
one. Overlap is safe because every state mutation is a single store
operation, and no cycle is ever cancelled by a later one.

run_cycle_safely is the cycle boundary: every exception a cycle raises is
caught and logged there, so a failing cycle simply ends and the next tick
starts fresh.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from failover.engine import CycleReport, FailoverEngine
from failover.exceptions import StoreUnavailableError
from failover.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TrackedCycle:
    """A dispatched cycle with metadata for monitoring.

    Attributes:
        future: The future running the cycle.
        cycle_number: Sequence number of the cycle since start.
        created_at: Dispatch time (monotonic).
    """

    future: Future[Any]
    cycle_number: int
    created_at: float = field(default_factory=time.monotonic)

    def age_seconds(self) -> float:
        """Get the age of this cycle in seconds."""
        return time.monotonic() - self.created_at


def run_cycle_safely(engine: FailoverEngine) -> CycleReport | None:
    """Run one cycle, logging instead of raising on any error.

    Args:
        engine: The decision engine.

    Returns:
        The cycle report, or None if the cycle failed.
    """
    try:
        return engine.run_cycle()
    except StoreUnavailableError as e:
        logger.error(
            "Cycle aborted, state store unavailable: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
    except (OSError, TimeoutError) as e:
        logger.error(
            "Error in failover cycle due to I/O or timeout: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
    except RuntimeError as e:
        logger.error(
            "Error in failover cycle due to runtime error: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
    except (KeyError, ValueError) as e:
        logger.error(
            "Error in failover cycle due to data error: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
    except Exception as e:
        # Cycle boundary: nothing may escape to the dispatcher thread.
        logger.exception(
            "Unexpected error in failover cycle: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
    return None


class CycleDispatcher:
    """Thread pool with completion tracking for decision cycles.

    Thread Safety:
        All public methods that modify shared state use internal locks.
    """

    def __init__(self, max_concurrent_cycles: int) -> None:
        """Initialize the dispatcher.

        Args:
            max_concurrent_cycles: Worker threads available for cycles. Cycles
                beyond this limit queue rather than being dropped.
        """
        self._max_concurrent_cycles = max_concurrent_cycles
        self._thread_pool: ThreadPoolExecutor | None = None
        self._tracked: list[TrackedCycle] = []
        self._lock = threading.Lock()
        self._dispatched = 0

    @property
    def dispatched_count(self) -> int:
        """Total cycles dispatched since start."""
        return self._dispatched

    def start(self) -> None:
        """Start the thread pool."""
        if self._thread_pool is not None:
            logger.warning("Cycle dispatcher already started")
            return
        self._thread_pool = ThreadPoolExecutor(
            max_workers=self._max_concurrent_cycles,
            thread_name_prefix="failover-cycle-",
        )
        logger.info("Started cycle dispatcher with max %d workers", self._max_concurrent_cycles)

    def is_running(self) -> bool:
        """Check if the thread pool is running."""
        return self._thread_pool is not None

    def submit(self, fn: Callable[[], Any]) -> Future[Any] | None:
        """Dispatch a cycle without waiting for it.

        Args:
            fn: Callable running the cycle.

        Returns:
            The cycle's future, or None if the dispatcher is not running.
        """
        if self._thread_pool is None:
            logger.warning("Cannot dispatch cycle: dispatcher not running")
            return None

        with self._lock:
            self._tracked = [tc for tc in self._tracked if not tc.future.done()]
            in_flight = len(self._tracked)
            self._dispatched += 1
            cycle_number = self._dispatched
            future = self._thread_pool.submit(fn)
            self._tracked.append(TrackedCycle(future=future, cycle_number=cycle_number))

        if in_flight:
            logger.warning(
                "Dispatching cycle %d while %d previous cycle(s) still running",
                cycle_number,
                in_flight,
            )
        return future

    def get_pending_futures(self) -> list[Future[Any]]:
        """Get futures of cycles that have not finished yet."""
        with self._lock:
            return [tc.future for tc in self._tracked if not tc.future.done()]

    def get_active_count(self) -> int:
        """Get the number of cycles still running or queued."""
        return len(self.get_pending_futures())

    def wait_for_completion(self, timeout: float | None = None) -> bool:
        """Wait for all dispatched cycles to settle.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Returns:
            True if every cycle finished, False if the timeout expired first.
        """
        pending = self.get_pending_futures()
        if not pending:
            return True
        logger.info("Waiting for %d in-flight cycle(s) to complete", len(pending))
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning("%d cycle(s) still running after %ss", len(not_done), timeout)
            return False
        return True

    def shutdown(self, block: bool = True) -> None:
        """Shutdown the thread pool.

        Args:
            block: If True, wait for all running and queued cycles.
        """
        if self._thread_pool is not None:
            logger.info("Shutting down cycle dispatcher...")
            self._thread_pool.shutdown(wait=block)
            self._thread_pool = None
            logger.info("Cycle dispatcher shutdown complete")


class CycleScheduler:
    """Fires a decision cycle every ``interval`` seconds on a timer thread."""

    def __init__(
        self,
        engine: FailoverEngine,
        dispatcher: CycleDispatcher,
        interval: float,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: The decision engine whose cycles are dispatched.
            dispatcher: Dispatcher running the cycles.
            interval: Seconds between cycle dispatches.
        """
        self._engine = engine
        self._dispatcher = dispatcher
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        """Get the dispatch interval in seconds."""
        return self._interval

    @property
    def is_running(self) -> bool:
        """Check if the timer thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def trigger(self) -> Future[Any] | None:
        """Dispatch one cycle now without waiting for it."""
        return self._dispatcher.submit(lambda: run_cycle_safely(self._engine))

    def run_once(self, timeout: float | None = None) -> CycleReport | None:
        """Dispatch one cycle and wait for its report.

        Args:
            timeout: Maximum seconds to wait for the cycle.

        Returns:
            The report, or None if the cycle failed or could not be dispatched.
        """
        future = self.trigger()
        if future is None:
            return None
        result: CycleReport | None = future.result(timeout=timeout)
        return result

    def _run_timer(self) -> None:
        next_run = time.monotonic()
        while not self._stop_event.is_set():
            self.trigger()
            next_run += self._interval
            self._stop_event.wait(max(0.0, next_run - time.monotonic()))

    def start(self) -> None:
        """Start the dispatcher (if needed) and the timer thread.

        The first cycle fires immediately.
        """
        if self.is_running:
            logger.warning("Cycle scheduler already running")
            return
        if not self._dispatcher.is_running():
            self._dispatcher.start()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_timer,
            name="failover-timer",
            daemon=True,
        )
        self._thread.start()
        logger.info("Cycle scheduler started, dispatching every %ss", self._interval)

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the timer and let in-flight cycles settle.

        Args:
            timeout: Maximum seconds to wait for in-flight cycles.

        Returns:
            True if every in-flight cycle finished before the timeout.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("Cycle timer thread did not terminate gracefully")
            self._thread = None

        settled = self._dispatcher.wait_for_completion(timeout=timeout)
        self._dispatcher.shutdown(block=settled)
        logger.info("Cycle scheduler stopped")
        return settled


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "CycleDispatcher",
    "CycleScheduler",
    "TrackedCycle",
    "run_cycle_safely",
]
