"""Configuration loading from environment variables.

Settings fall into two groups:

- Required settings (monitored URL, thresholds, probe timeout, rule and zone
  identifiers, credentials). These fail closed: every problem is collected
  and a single ConfigValidationError is raised, so the process never starts
  a cycle with a partial configuration.
- Operational settings (poll interval, API bind address, state file, rate
  limit, ...). Invalid values are logged and replaced with their default.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from failover.exceptions import ConfigValidationError

# Accepted LOG_LEVEL spellings mapped to stdlib level names
LOG_LEVEL_ALIASES = {
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "WARN": "WARNING",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
}

# Probe timeout bounds in seconds
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 30

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_CLOUDFLARE_API_BASE_URL = "https://api.cloudflare.com/client/v4"


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable). It is built once at process start
    and passed explicitly to every component that needs it.
    """

    # Monitoring
    monitor_url: str = ""
    failure_threshold: int = 3
    recovery_threshold: int = 2
    timeout_seconds: int = 10
    poll_interval: int = 60  # seconds

    # Redirect rule addressing
    redirect_rule_id: str = ""
    # When empty, redirect_rule_id is used as the ruleset id and every rule
    # in the ruleset is toggled together.
    redirect_ruleset_id: str = ""
    account_id: str = ""
    zone_id: str = ""
    cloudflare_api_base_url: str = DEFAULT_CLOUDFLARE_API_BASE_URL
    cloudflare_api_token: str = field(default="", repr=False)

    # Inbound API
    api_token: str = field(default="", repr=False)
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    rate_limit_per_minute: int = 60

    # State persistence
    state_file: Path = Path("./state/monitor-state.json")
    store_operation_timeout: float = 10.0

    # Cycle execution
    max_concurrent_cycles: int = 2
    shutdown_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def effective_ruleset_id(self) -> str:
        """The ruleset addressed by the rule-management API."""
        return self.redirect_ruleset_id or self.redirect_rule_id


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed port number (MIN_PORT-MAX_PORT), or the default if invalid.
    """
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Args:
        value: The string value to parse.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a positive float, falling back to ``default``."""
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _require(name: str, errors: list[str]) -> str:
    """Read a required, non-empty setting.

    Args:
        name: Environment variable name.
        errors: Collected validation errors; appended to when missing.

    Returns:
        The stripped value, or an empty string if missing.
    """
    value = os.getenv(name, "").strip()
    if not value:
        errors.append(f"{name} is required")
    return value


def _require_int(
    name: str,
    errors: list[str],
    minimum: int = 1,
    maximum: int | None = None,
) -> int:
    """Read a required integer setting and check its bounds.

    Args:
        name: Environment variable name.
        errors: Collected validation errors.
        minimum: Smallest accepted value (inclusive).
        maximum: Largest accepted value (inclusive), or None for unbounded.

    Returns:
        The parsed integer, or 0 if missing or invalid.
    """
    raw = _require(name, errors)
    if not raw:
        return 0
    try:
        parsed = int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer, got '{raw}'")
        return 0
    if parsed < minimum or (maximum is not None and parsed > maximum):
        if maximum is None:
            errors.append(f"{name} must be at least {minimum}, got {parsed}")
        else:
            errors.append(f"{name} must be between {minimum} and {maximum}, got {parsed}")
        return 0
    return parsed


def _validate_monitor_url(value: str, errors: list[str]) -> str:
    """Require an absolute https URL for the monitored target."""
    if not value:
        return value
    parsed = urlparse(value)
    if parsed.scheme != "https" or not parsed.netloc:
        errors.append(f"MONITOR_URL must be an https URL, got '{value}'")
    return value


def _validate_log_level(value: str, errors: list[str]) -> str:
    """Normalize LOG_LEVEL to a stdlib level name.

    Args:
        value: The raw LOG_LEVEL value.
        errors: Collected validation errors.

    Returns:
        The normalized level name, or "INFO" when invalid.
    """
    normalized = LOG_LEVEL_ALIASES.get(value.strip().upper())
    if normalized is None:
        errors.append(
            f"LOG_LEVEL must be one of debug, info, warn, error, got '{value}'"
        )
        return "INFO"
    return normalized


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Raises:
        ConfigValidationError: If any required setting is missing or invalid.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    errors: list[str] = []

    monitor_url = _validate_monitor_url(_require("MONITOR_URL", errors), errors)
    failure_threshold = _require_int("FAILURE_COUNT_THRESHOLD", errors)
    recovery_threshold = _require_int("RECOVERY_COUNT_THRESHOLD", errors)
    timeout_seconds = _require_int(
        "TIMEOUT_SECONDS", errors, MIN_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS
    )
    redirect_rule_id = _require("REDIRECT_RULE_ID", errors)
    account_id = _require("ACCOUNT_ID", errors)
    zone_id = _require("ZONE_ID", errors)
    cloudflare_api_token = _require("CLOUDFLARE_API_TOKEN", errors)
    api_token = _require("API_TOKEN", errors)
    log_level = _validate_log_level(os.getenv("LOG_LEVEL", "info"), errors)

    if errors:
        raise ConfigValidationError(errors)

    poll_interval = _parse_positive_int(
        os.getenv("FAILOVER_POLL_INTERVAL", "60"),
        "FAILOVER_POLL_INTERVAL",
        60,
    )
    api_port = _parse_port(
        os.getenv("FAILOVER_API_PORT", "8080"),
        "FAILOVER_API_PORT",
        8080,
    )
    rate_limit_per_minute = _parse_positive_int(
        os.getenv("FAILOVER_RATE_LIMIT_PER_MINUTE", "60"),
        "FAILOVER_RATE_LIMIT_PER_MINUTE",
        60,
    )
    max_concurrent_cycles = _parse_positive_int(
        os.getenv("FAILOVER_MAX_CONCURRENT_CYCLES", "2"),
        "FAILOVER_MAX_CONCURRENT_CYCLES",
        2,
    )
    shutdown_timeout = _parse_positive_float(
        os.getenv("FAILOVER_SHUTDOWN_TIMEOUT", "30.0"),
        "FAILOVER_SHUTDOWN_TIMEOUT",
        30.0,
    )
    store_operation_timeout = _parse_positive_float(
        os.getenv("FAILOVER_STORE_TIMEOUT", "10.0"),
        "FAILOVER_STORE_TIMEOUT",
        10.0,
    )

    return Config(
        monitor_url=monitor_url,
        failure_threshold=failure_threshold,
        recovery_threshold=recovery_threshold,
        timeout_seconds=timeout_seconds,
        poll_interval=poll_interval,
        redirect_rule_id=redirect_rule_id,
        redirect_ruleset_id=os.getenv("REDIRECT_RULESET_ID", "").strip(),
        account_id=account_id,
        zone_id=zone_id,
        cloudflare_api_base_url=os.getenv(
            "CLOUDFLARE_API_BASE_URL", DEFAULT_CLOUDFLARE_API_BASE_URL
        ).rstrip("/"),
        cloudflare_api_token=cloudflare_api_token,
        api_token=api_token,
        api_host=os.getenv("FAILOVER_API_HOST", "127.0.0.1"),
        api_port=api_port,
        rate_limit_per_minute=rate_limit_per_minute,
        state_file=Path(os.getenv("FAILOVER_STATE_FILE", "./state/monitor-state.json")),
        store_operation_timeout=store_operation_timeout,
        max_concurrent_cycles=max_concurrent_cycles,
        shutdown_timeout=shutdown_timeout,
        log_level=log_level,
        log_json=_parse_bool(os.getenv("FAILOVER_LOG_JSON", "")),
    )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "Config",
    "DEFAULT_CLOUDFLARE_API_BASE_URL",
    "load_config",
]
