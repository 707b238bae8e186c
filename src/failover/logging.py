"""Log formatting and setup for the failover monitor.

Two output styles are supported: a compact human-readable line for terminals
and one JSON object per line for log shippers. Selected fields passed through
``extra=`` (see CONTEXT_FIELDS) are rendered by both.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Extra fields rendered by the formatters when present on a record
CONTEXT_FIELDS = ("rule_id", "event", "attempt", "status_code", "outcome")


def _component_name(record: logging.LogRecord) -> str:
    # "failover.rule_client" -> "rule_client"
    return record.name.split(".")[-1] if "." in record.name else record.name


class StructuredFormatter(logging.Formatter):
    """Human-readable single-line formatter.

    Example:
        2026-05-01 12:00:00.000 [INFO    ] [engine      ] [event=enabled] Redirect rule enabled
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        timestamp = created.strftime("%Y-%m-%d %H:%M:%S.") + f"{created.microsecond // 1000:03d}"

        level = f"[{record.levelname:<8}]"
        component = f"[{_component_name(record):<12}]"
        parts = [timestamp, level, component]

        context = " ".join(
            f"{key}={getattr(record, key)}" for key in CONTEXT_FIELDS if hasattr(record, key)
        )
        if context:
            parts.append(f"[{context}]")

        parts.append(record.getMessage())

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": _component_name(record),
            "message": record.getMessage(),
        }
        payload.update(
            {
                key: getattr(record, key)
                for key in (*CONTEXT_FIELDS, "error_type")
                if hasattr(record, key)
            }
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Adapter that attaches fixed fields to every record it emits.

    Usage:
        rule_logger = get_logger(__name__).with_context(rule_id="abc123", event="enabled")
        rule_logger.info("Toggling redirect rule")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        # Per-call extra wins over the adapter's fields on key clashes
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


class FailoverLogger(logging.Logger):
    """Logger class installed for the whole process."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Bind ``context`` (rule_id, event, ...) to a new adapter."""
        return ContextAdapter(self, context)


logging.setLoggerClass(FailoverLogger)


def get_logger(name: str) -> FailoverLogger:
    """Return the FailoverLogger for ``name`` (usually ``__name__``)."""
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    Any handlers already on the root logger are removed first, so calling
    this twice does not duplicate output.

    Args:
        level: Level name such as DEBUG or WARNING. Unknown names mean INFO.
        json_format: Emit JSON lines instead of the human-readable format.
    """
    resolved = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(resolved)
    stderr_handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    root.addHandler(stderr_handler)
    root.setLevel(resolved)

    logging.getLogger("failover").setLevel(resolved)

    # httpx logs every request at INFO; keep probe traffic out of the log
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))


def log_cycle_summary(
    logger: logging.Logger,
    outcome: str,
    healthy: bool | None,
    consecutive_failures: int,
    consecutive_successes: int,
    rule_active: bool,
) -> None:
    """Log a one-line summary of a completed failover cycle.

    Args:
        logger: Logger to use.
        outcome: Cycle outcome name (e.g. NO_ACTION, RULE_ENABLED).
        healthy: Probe result, or None when no probe ran.
        consecutive_failures: Failure streak after the cycle.
        consecutive_successes: Success streak after the cycle.
        rule_active: Whether the redirect rule is engaged after the cycle.
    """
    if outcome in ("API_ERROR", "AUTH_FAILED"):
        log_method = logger.error
    elif outcome == "SUSPENDED":
        log_method = logger.warning
    elif outcome in ("RULE_ENABLED", "RULE_DISABLED", "SUPPRESSED"):
        log_method = logger.info
    else:
        log_method = logger.debug

    probe = "n/a" if healthy is None else ("healthy" if healthy else "unhealthy")
    log_method(
        "Cycle %s: probe=%s failures=%d successes=%d rule_active=%s",
        outcome,
        probe,
        consecutive_failures,
        consecutive_successes,
        rule_active,
        extra={"outcome": outcome},
    )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "CONTEXT_FIELDS",
    "ContextAdapter",
    "FailoverLogger",
    "JSONFormatter",
    "StructuredFormatter",
    "get_logger",
    "log_cycle_summary",
    "setup_logging",
]
