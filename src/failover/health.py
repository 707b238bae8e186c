"""Liveness report for the failover sentinel.

The report answers "is the monitor itself working?", not "is the monitored
site up?":

- healthy: the state store is reachable and the last cycle fired recently
- degraded: the store is reachable but no cycle has fired yet
- unhealthy: the last cycle fired more than CRON_STALE_AFTER ago, or the
  state store is unavailable
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from failover.exceptions import StoreUnavailableError
from failover.logging import get_logger
from failover.store import Clock, MonitorStateStore, utc_now

logger = get_logger(__name__)

# A cycle older than this means the scheduler has stalled
CRON_STALE_AFTER = timedelta(seconds=120)


class HealthStatus(Enum):
    """Overall health of the monitor."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthReport:
    """Result of a health check.

    Attributes:
        status: Overall health.
        store_available: Whether the state store answered.
        last_cron_time: When the last cycle fired, if ever.
        uptime_seconds: Seconds since the process started, if known.
        error: Description of the failure, if any.
    """

    status: HealthStatus
    store_available: bool
    last_cron_time: datetime | None = None
    uptime_seconds: float | None = None
    error: str | None = None

    @property
    def http_status(self) -> int:
        """HTTP status code for the /health endpoint."""
        return 200 if self.store_available else 503

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "durable_state_available": self.store_available,
            "last_cron_execution": (
                self.last_cron_time.isoformat() if self.last_cron_time is not None else None
            ),
            "uptime_seconds": (
                round(self.uptime_seconds, 3) if self.uptime_seconds is not None else None
            ),
        }
        if self.error:
            result["error"] = self.error
        return result


class HealthChecker:
    """Computes the health report from the shared state."""

    def __init__(
        self,
        store: MonitorStateStore,
        clock: Clock = utc_now,
        stale_after: timedelta = CRON_STALE_AFTER,
    ) -> None:
        self._store = store
        self._clock = clock
        self._stale_after = stale_after

    def check(self) -> HealthReport:
        """Run the health check. Never raises."""
        try:
            state = self._store.get()
        except StoreUnavailableError as e:
            logger.error("Health check failed, state store unavailable: %s", e)
            return HealthReport(
                status=HealthStatus.UNHEALTHY,
                store_available=False,
                error=str(e),
            )

        now = self._clock()
        uptime = (now - state.process_start_time).total_seconds()

        if state.last_cron_time is None:
            status = HealthStatus.DEGRADED
        elif now - state.last_cron_time > self._stale_after:
            status = HealthStatus.UNHEALTHY
        else:
            status = HealthStatus.HEALTHY

        return HealthReport(
            status=status,
            store_available=True,
            last_cron_time=state.last_cron_time,
            uptime_seconds=uptime,
        )


__all__ = [
    "CRON_STALE_AFTER",
    "HealthChecker",
    "HealthReport",
    "HealthStatus",
]
