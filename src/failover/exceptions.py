"""Exception taxonomy for the failover sentinel.

Probe failures are not exceptions: the prober reports them as outcome
values, and ProbeDeadlineExceeded never leaves the prober. Rule controller
failures are also values at the client's public boundary; the exception
types below are used internally by the client and by the API layer when
mapping errors to HTTP status codes.
"""

from __future__ import annotations


class FailoverError(Exception):
    """Base class for all failover sentinel errors."""

    pass


class ConfigValidationError(FailoverError):
    """Raised when required configuration is missing or invalid.

    Carries every problem found so they can be reported together at startup.

    Attributes:
        errors: Human-readable description of each invalid setting.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Configuration validation failed: " + "; ".join(self.errors))


class ProbeDeadlineExceeded(FailoverError):
    """Raised inside the prober when a request outlives its timeout."""

    pass


class RuleControllerError(FailoverError):
    """Raised for a failed rule-management API call that may be retried."""

    pass


class RuleControllerAuthError(RuleControllerError):
    """Raised when the rule-management API rejects the credential (401/403).

    Attributes:
        status_code: The HTTP status code returned by the API.
    """

    def __init__(self, message: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)


class StoreUnavailableError(FailoverError):
    """Raised when the state store cannot read or persist monitor state."""

    pass


class MaintenanceWindowNotFoundError(FailoverError):
    """Raised when deleting a maintenance window id that does not exist.

    Attributes:
        window_id: The id that was not found.
    """

    def __init__(self, window_id: str) -> None:
        self.window_id = window_id
        super().__init__(f"Maintenance window not found: {window_id}")


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "ConfigValidationError",
    "FailoverError",
    "MaintenanceWindowNotFoundError",
    "ProbeDeadlineExceeded",
    "RuleControllerAuthError",
    "RuleControllerError",
    "StoreUnavailableError",
]
