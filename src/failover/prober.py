"""Health probe for the monitored site.

A probe is a single GET with a hard timeout. Only an exact HTTP 200 counts as
healthy; any other status, transport error, or timeout is unhealthy. Probe
failures are returned as values and never raised, so retry and hysteresis
stay in the decision engine's consecutive counters.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import httpx

from failover.exceptions import ProbeDeadlineExceeded
from failover.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Site-Failover-Sentinel/1.0"


class ProbeOutcome(Enum):
    """Classification of a single probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProbeResult:
    """Result of probing the monitored URL.

    Attributes:
        outcome: Healthy or unhealthy.
        latency_ms: Time spent on the request in milliseconds.
        status_code: HTTP status received, or None if no response arrived.
        error: Description of the failure, or None when healthy.
    """

    outcome: ProbeOutcome
    latency_ms: float
    status_code: int | None = None
    error: str | None = None

    @property
    def healthy(self) -> bool:
        """Whether the probe succeeded."""
        return self.outcome is ProbeOutcome.HEALTHY


class Prober(Protocol):
    """Anything that can probe a URL and classify the outcome."""

    def probe(self, url: str, timeout_seconds: float) -> ProbeResult:
        """Probe ``url`` within ``timeout_seconds``. Must not raise."""
        ...


class HttpProber:
    """Prober that issues one HTTP GET per probe using httpx.

    Redirects are not followed: a 3xx from the monitored URL is not a 200
    and counts as unhealthy.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the prober.

        Args:
            transport: Optional httpx transport, used by tests to stub the network.
            monotonic: Clock used for the request deadline and latency.
        """
        self._transport = transport
        self._monotonic = monotonic

    def probe(self, url: str, timeout_seconds: float) -> ProbeResult:
        """Probe the URL once.

        The deadline covers the whole exchange: connecting, receiving the
        headers and reading the body. httpx applies ``timeout_seconds`` to
        each phase, so the deadline is also checked after the headers arrive
        and after every body chunk. A slow-drip response is therefore cut off
        at most one read timeout past the deadline.

        Args:
            url: The URL to GET.
            timeout_seconds: Deadline for the whole request.

        Returns:
            ProbeResult describing the outcome.
        """
        start = self._monotonic()
        deadline = start + timeout_seconds
        try:
            with httpx.Client(
                timeout=httpx.Timeout(timeout_seconds),
                transport=self._transport,
                follow_redirects=False,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                with client.stream("GET", url) as response:
                    self._check_deadline(deadline, timeout_seconds)
                    for _ in response.iter_bytes():
                        self._check_deadline(deadline, timeout_seconds)
        except (httpx.TimeoutException, ProbeDeadlineExceeded) as e:
            logger.warning("Health check timed out after %ss: %s", timeout_seconds, e)
            return ProbeResult(
                outcome=ProbeOutcome.UNHEALTHY,
                latency_ms=self._elapsed_ms(start),
                error=f"timeout after {timeout_seconds}s",
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.warning("Health check request error: %s", e)
            return ProbeResult(
                outcome=ProbeOutcome.UNHEALTHY,
                latency_ms=self._elapsed_ms(start),
                error=f"{type(e).__name__}: {e}",
            )

        latency_ms = self._elapsed_ms(start)
        if response.status_code == 200:
            logger.debug("Health check passed in %.0fms", latency_ms)
            return ProbeResult(
                outcome=ProbeOutcome.HEALTHY,
                latency_ms=latency_ms,
                status_code=200,
            )

        logger.warning(
            "Health check failed with status %d",
            response.status_code,
            extra={"status_code": response.status_code},
        )
        return ProbeResult(
            outcome=ProbeOutcome.UNHEALTHY,
            latency_ms=latency_ms,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    def _check_deadline(self, deadline: float, timeout_seconds: float) -> None:
        if self._monotonic() > deadline:
            raise ProbeDeadlineExceeded(f"request exceeded {timeout_seconds}s")

    def _elapsed_ms(self, start: float) -> float:
        return (self._monotonic() - start) * 1000


__all__ = [
    "HttpProber",
    "ProbeOutcome",
    "ProbeResult",
    "Prober",
    "USER_AGENT",
]
