"""REST client for toggling the Cloudflare redirect rule.

Toggling is a read-modify-write of the whole ruleset:

    GET  {api}/zones/{zone}/rulesets/{ruleset}   -> current rules
    PUT  {api}/zones/{zone}/rulesets/{ruleset}   <- same rules, target flag overwritten

Each toggle is attempted up to three times with exponential backoff (1s
after the first failure, 2s after the second, no wait after the last). An
HTTP 401 or 403 at any point aborts immediately with AUTHENTICATION_FAILED;
the caller latches API suspension on that outcome, so retrying a rejected
credential would be pointless.

Known race: an external edit to another rule in the same ruleset between
our GET and PUT is overwritten by the PUT. Cloudflare offers no conditional
write for rulesets, and the window is a few hundred milliseconds.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Self, TypeVar

import httpx

from failover.config import DEFAULT_CLOUDFLARE_API_BASE_URL
from failover.exceptions import RuleControllerAuthError, RuleControllerError
from failover.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Default timeout for HTTP requests (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=30.0)

# Status codes that mean the API token was rejected
AUTH_FAILURE_STATUS_CODES = frozenset({401, 403})


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first (default: 3).
        initial_delay: Delay in seconds after the first failed attempt (default: 1.0).
        backoff_factor: Multiplier applied to the delay after each further
            failure (default: 2.0).
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0


DEFAULT_RETRY_CONFIG = RetryConfig()


class RuleUpdateResult(Enum):
    """Outcome of a rule toggle request."""

    SUCCESS = "success"
    FAILURE = "failure"
    AUTHENTICATION_FAILED = "authentication_failed"


@dataclass(frozen=True)
class RuleInfo:
    """Live status of the redirect rule as reported by Cloudflare.

    Attributes:
        id: Rule identifier.
        enabled: Whether the rule is enabled.
        status: "active" or "inactive".
        last_modified: Cloudflare's last_updated timestamp, if reported.
    """

    id: str
    enabled: bool
    status: str
    last_modified: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "enabled": self.enabled,
            "status": self.status,
            "last_modified": self.last_modified,
        }


class RuleController(Protocol):
    """Interface the decision engine uses to drive the redirect rule."""

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> RuleUpdateResult:
        """Enable or disable the rule. Must not raise."""
        ...

    def get_rule_status(self, rule_id: str) -> RuleInfo | None:
        """Fetch live rule status, or None if unavailable. Must not raise."""
        ...


def _calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate the delay after a failed attempt.

    Args:
        attempt: The attempt that just failed (1-based).
        config: Retry configuration.

    Returns:
        Delay in seconds: initial_delay * backoff_factor ** (attempt - 1).
    """
    return config.initial_delay * (config.backoff_factor ** (attempt - 1))


def _execute_with_retry(
    operation: Callable[[], T],
    description: str,
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute an operation with retry and exponential backoff.

    Args:
        operation: Callable performing one full attempt. Raises
            RuleControllerAuthError on rejected credentials and any of
            RuleControllerError, httpx.HTTPError, KeyError, TypeError or
            ValueError on a retryable failure.
        description: Short description of the operation for log messages.
        config: Retry configuration.
        sleep: Function used to wait between attempts.

    Returns:
        Result from the operation.

    Raises:
        RuleControllerAuthError: Immediately, without further attempts.
        RuleControllerError: If all attempts fail.
    """
    last_exception: Exception | None = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return operation()
        except RuleControllerAuthError:
            raise
        except (RuleControllerError, httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            last_exception = e
            logger.warning(
                "Failed to %s (attempt %d/%d): %s",
                description,
                attempt,
                config.max_attempts,
                e,
                extra={"attempt": attempt, "error_type": type(e).__name__},
            )
            if attempt < config.max_attempts:
                delay = _calculate_backoff_delay(attempt, config)
                logger.debug("Retrying in %.1fs", delay)
                sleep(delay)

    raise RuleControllerError(
        f"Failed to {description} after {config.max_attempts} attempts: {last_exception}"
    ) from last_exception


class BaseHttpClient:
    """Base class providing HTTP client connection pooling.

    This class encapsulates the shared connection pooling functionality including:
    - Lazy initialization of httpx.Client
    - Resource cleanup via close() method
    - Context manager support (__enter__/__exit__)

    Subclasses must set self.timeout and self.headers before using _get_client().
    """

    timeout: httpx.Timeout
    headers: dict[str, str]

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the base HTTP client.

        Args:
            transport: Optional httpx transport, used by tests to stub the network.
        """
        # Reusable HTTP client for connection pooling - lazily initialized
        self._client: httpx.Client | None = None
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        """Get or create the reusable HTTP client.

        Returns:
            A configured httpx.Client instance with connection pooling.

        Raises:
            RuntimeError: If subclass has not set required timeout or headers attributes.
        """
        if self._client is None:
            if getattr(self, "timeout", None) is None:
                raise RuntimeError(
                    f"{self.__class__.__name__} must set self.timeout before calling _get_client()"
                )
            if getattr(self, "headers", None) is None:
                raise RuntimeError(
                    f"{self.__class__.__name__} must set self.headers before calling _get_client()"
                )
            self._client = httpx.Client(
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit - closes the HTTP client."""
        self.close()


class CloudflareRuleClient(BaseHttpClient):
    """Rule controller backed by the Cloudflare rulesets API.

    Two addressing modes are supported:

    - ``ruleset_id`` given: the ruleset at that id is fetched and only the rule
      whose ``id`` equals the ``rule_id`` argument is toggled.
    - ``ruleset_id`` omitted: ``rule_id`` names the ruleset itself and every
      rule in it is toggled together. A ruleset holding a single redirect
      rule is the typical deployment.
    """

    def __init__(
        self,
        api_token: str,
        zone_id: str,
        ruleset_id: str | None = None,
        base_url: str = DEFAULT_CLOUDFLARE_API_BASE_URL,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the Cloudflare rule client.

        Args:
            api_token: Cloudflare API token with ruleset edit permission.
            zone_id: Zone containing the ruleset.
            ruleset_id: Ruleset containing the target rule, if different
                from the rule id.
            base_url: Cloudflare API base URL.
            timeout: Optional custom timeout configuration.
            retry_config: Optional retry configuration.
            transport: Optional httpx transport (tests).
            sleep: Function used to wait between retries (tests).
        """
        super().__init__(transport=transport)
        self.base_url = base_url.rstrip("/")
        self.zone_id = zone_id
        self.ruleset_id = ruleset_id or None
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.retry_config = retry_config or DEFAULT_RETRY_CONFIG
        self._sleep = sleep

    def _ruleset_url(self, rule_id: str) -> str:
        ruleset_id = self.ruleset_id or rule_id
        return f"{self.base_url}/zones/{self.zone_id}/rulesets/{ruleset_id}"

    def _check_response(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """Validate a rulesets API response and return its JSON body.

        Raises:
            RuleControllerAuthError: On 401/403.
            RuleControllerError: On any other non-success response.
        """
        status = response.status_code
        if status in AUTH_FAILURE_STATUS_CODES:
            raise RuleControllerAuthError(
                f"Cloudflare API rejected credentials during {operation} (HTTP {status})",
                status_code=status,
            )
        if not response.is_success:
            raise RuleControllerError(f"HTTP {status} during {operation}")

        data = response.json()
        if not isinstance(data, dict):
            raise RuleControllerError(f"Unexpected response body during {operation}")
        if data.get("success") is False:
            messages = [
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in data.get("errors") or []
            ]
            raise RuleControllerError(
                f"Cloudflare API reported failure during {operation}: {'; '.join(messages)}"
            )
        return data

    def _fetch_rules(self, rule_id: str) -> list[dict[str, Any]]:
        response = self._get_client().get(self._ruleset_url(rule_id))
        data = self._check_response(response, "ruleset fetch")
        rules = data["result"]["rules"]
        if not isinstance(rules, list):
            raise RuleControllerError("Ruleset response has no rules list")
        if not all(isinstance(rule, dict) for rule in rules):
            raise RuleControllerError("Ruleset response contains a malformed rule entry")
        return rules

    def _apply_enabled(
        self, rules: list[dict[str, Any]], rule_id: str, enabled: bool
    ) -> list[dict[str, Any]]:
        """Return a copy of ``rules`` with the target rule(s) set to ``enabled``."""
        if not rules:
            raise RuleControllerError("Ruleset contains no rules")
        if self.ruleset_id is None:
            return [{**rule, "enabled": enabled} for rule in rules]

        if not any(rule.get("id") == rule_id for rule in rules):
            raise RuleControllerError(f"Rule {rule_id} not found in ruleset {self.ruleset_id}")
        return [
            {**rule, "enabled": enabled} if rule.get("id") == rule_id else rule
            for rule in rules
        ]

    def _toggle_once(self, rule_id: str, enabled: bool) -> None:
        rules = self._fetch_rules(rule_id)
        updated = self._apply_enabled(rules, rule_id, enabled)
        response = self._get_client().put(self._ruleset_url(rule_id), json={"rules": updated})
        self._check_response(response, "ruleset update")

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> RuleUpdateResult:
        """Enable or disable the redirect rule.

        Args:
            rule_id: The rule (or ruleset, see class docstring) to toggle.
            enabled: Desired rule state.

        Returns:
            SUCCESS once the update is accepted, AUTHENTICATION_FAILED on
            401/403, FAILURE when every attempt failed.
        """
        action = "enable" if enabled else "disable"
        ctx_logger = logger.with_context(rule_id=rule_id, event=action)
        ctx_logger.info("Attempting to %s redirect rule", action)

        try:
            _execute_with_retry(
                lambda: self._toggle_once(rule_id, enabled),
                description=f"{action} redirect rule",
                config=self.retry_config,
                sleep=self._sleep,
            )
        except RuleControllerAuthError as e:
            ctx_logger.error(
                "Critical: Cloudflare API authentication failed (HTTP %d); "
                "rule changes will be suspended",
                e.status_code,
                extra={"status_code": e.status_code},
            )
            return RuleUpdateResult.AUTHENTICATION_FAILED
        except RuleControllerError as e:
            ctx_logger.error("All retries exhausted: %s", e)
            return RuleUpdateResult.FAILURE

        ctx_logger.info("Successfully %sd redirect rule", action)
        return RuleUpdateResult.SUCCESS

    def get_rule_status(self, rule_id: str) -> RuleInfo | None:
        """Fetch the live status of the redirect rule.

        Single attempt, no retries.

        Args:
            rule_id: The rule (or ruleset) to inspect.

        Returns:
            RuleInfo, or None if the status could not be fetched.
        """
        try:
            rules = self._fetch_rules(rule_id)
        except (RuleControllerError, httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error(
                "Failed to fetch redirect rule: %s",
                e,
                extra={"rule_id": rule_id, "error_type": type(e).__name__},
            )
            return None

        if self.ruleset_id is None:
            rule = rules[0] if rules else None
        else:
            rule = next((r for r in rules if r.get("id") == rule_id), None)
        if rule is None:
            logger.warning("Redirect rule not found in ruleset", extra={"rule_id": rule_id})
            return None

        enabled = rule.get("enabled") is True
        return RuleInfo(
            id=str(rule.get("id", rule_id)),
            enabled=enabled,
            status="active" if enabled else "inactive",
            last_modified=rule.get("last_updated"),
        )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "AUTH_FAILURE_STATUS_CODES",
    "BaseHttpClient",
    "CloudflareRuleClient",
    "DEFAULT_RETRY_CONFIG",
    "DEFAULT_TIMEOUT",
    "RetryConfig",
    "RuleController",
    "RuleInfo",
    "RuleUpdateResult",
]
