"""Test helper functions for building configuration and fixtures."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from failover.config import Config
from failover.store import MaintenanceWindow

TEST_API_TOKEN = "test-api-token"


def make_config(**overrides: Any) -> Config:
    """Build a Config with valid test values.

    Args:
        **overrides: Fields replacing the defaults.

    Returns:
        A Config suitable for engine and API tests.
    """
    fields: dict[str, Any] = {
        "monitor_url": "https://www.example.com/health",
        "failure_threshold": 3,
        "recovery_threshold": 2,
        "timeout_seconds": 10,
        "redirect_rule_id": "rule-123",
        "account_id": "account-1",
        "zone_id": "zone-1",
        "cloudflare_api_token": "cf-token",
        "api_token": TEST_API_TOKEN,
    }
    fields.update(overrides)
    return Config(**fields)


def make_window(
    start: datetime,
    duration: timedelta = timedelta(hours=1),
    reason: str | None = "planned work",
    window_id: str | None = None,
) -> MaintenanceWindow:
    """Build a maintenance window starting at ``start``."""
    return MaintenanceWindow(
        id=window_id or str(uuid.uuid4()),
        start_time=start,
        end_time=start + duration,
        reason=reason,
    )
