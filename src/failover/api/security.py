"""Bearer-token authentication and per-client rate limiting.

Both are exposed as FastAPI dependencies and attached to every route except
the unauthenticated health and documentation endpoints. Rate limiting runs
first so that failed authentication attempts are limited too.
"""

from __future__ import annotations

import logging
import secrets
import time

from cachetools import TTLCache
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Length of one rate-limit window in seconds
RATE_LIMIT_WINDOW_SECONDS = 60

# Maximum number of distinct clients tracked at once
RATE_LIMIT_CACHE_MAXSIZE = 10000


def client_ip(request: Request) -> str:
    """Best-effort client address for rate limiting.

    Prefers the address set by Cloudflare, then the first X-Forwarded-For
    hop, then the socket peer.
    """
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Fixed-window request limiter keyed by client address.

    Each client may make ``limit`` requests per window. Window state lives in
    a TTLCache so idle clients are forgotten automatically.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        maxsize: int = RATE_LIMIT_CACHE_MAXSIZE,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            limit: Requests allowed per client per window.
            window_seconds: Window length in seconds.
            maxsize: Maximum number of clients tracked.
        """
        self._limit = limit
        self._window_seconds = window_seconds
        # client -> (window start, requests in window)
        self._windows: TTLCache[str, tuple[float, int]] = TTLCache(
            maxsize=maxsize, ttl=window_seconds
        )

    @property
    def limit(self) -> int:
        """Requests allowed per client per window."""
        return self._limit

    def check(self, client: str) -> None:
        """Count a request and reject it if the client is over its limit.

        Args:
            client: Client identifier (usually an IP address).

        Raises:
            HTTPException: 429 with a Retry-After header when over the limit.
        """
        now = time.monotonic()
        window_start, count = self._windows.get(client, (now, 0))
        if now - window_start >= self._window_seconds:
            window_start, count = now, 0

        if count >= self._limit:
            retry_after = max(1, int(self._window_seconds - (now - window_start) + 0.999))
            logger.warning("Rate limit exceeded for client %s", client)
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please try again later.",
                headers={"Retry-After": str(retry_after)},
            )

        self._windows[client] = (window_start, count + 1)

    async def __call__(self, request: Request) -> None:
        """FastAPI dependency entry point."""
        self.check(client_ip(request))


class BearerTokenAuth:
    """FastAPI dependency that requires ``Authorization: Bearer <token>``."""

    def __init__(self, token: str) -> None:
        """Initialize the dependency.

        Args:
            token: The expected API token.
        """
        self._token = token

    async def __call__(self, request: Request) -> None:
        """Validate the Authorization header.

        Raises:
            HTTPException: 401 if the header is missing, malformed, or wrong.
        """
        header = request.headers.get("Authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() != "bearer" or not credentials:
            raise HTTPException(
                status_code=401,
                detail="Unauthorized - Bearer token required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not self._token or not secrets.compare_digest(
            credentials.strip().encode(), self._token.encode()
        ):
            logger.warning("Rejected request with invalid API token from %s", client_ip(request))
            raise HTTPException(
                status_code=401,
                detail="Unauthorized - Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )


__all__ = [
    "BearerTokenAuth",
    "RateLimiter",
    "client_ip",
]
