"""Pydantic request/response models for the management API.

Models are grouped by feature:

- Status models: StatusResponse, ThresholdsResponse
- Rule models: RuleStatusResponse, HistoryEntryResponse, HistoryResponse,
  SimulateResponse
- Counter models: ResetResponse
- Maintenance models: MaintenanceModeRequest, MaintenanceModeResponse,
  MaintenanceWindowRequest, MaintenanceWindowResponse,
  MaintenanceWindowsResponse, DeleteResponse
- Error model: ErrorResponse
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# Upper bound for operator-supplied reason strings
MAX_REASON_LENGTH = 500

# NOTE: Update this list when adding new models to this module.
__all__: list[str] = [
    # Status models
    "StatusResponse",
    "ThresholdsResponse",
    # Rule models
    "RuleStatusResponse",
    "HistoryEntryResponse",
    "HistoryResponse",
    "SimulateResponse",
    # Counter models
    "ResetResponse",
    # Maintenance models
    "MaintenanceModeRequest",
    "MaintenanceModeResponse",
    "MaintenanceWindowRequest",
    "MaintenanceWindowResponse",
    "MaintenanceWindowsResponse",
    "DeleteResponse",
    # Error model
    "ErrorResponse",
]


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    error: str


# Status models
class ThresholdsResponse(BaseModel):
    """Configured hysteresis thresholds and probe timeout."""

    failure: int
    recovery: int
    timeout_seconds: int


class MaintenanceWindowResponse(BaseModel):
    """A scheduled maintenance window."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    start_time: datetime
    end_time: datetime
    reason: str | None = None
    is_active: bool = False


class StatusResponse(BaseModel):
    """Snapshot of the monitor's counters, rule state and maintenance state."""

    monitor_url: str
    consecutive_failures: int
    consecutive_successes: int
    last_check_time: datetime | None
    next_check_time: datetime | None
    redirect_rule_enabled: bool
    maintenance_mode: bool
    maintenance_mode_reason: str | None
    maintenance_suppressed: bool
    scheduled_maintenance_windows: list[MaintenanceWindowResponse]
    api_calls_suspended: bool
    thresholds: ThresholdsResponse
    total_checks: int
    total_successes: int
    total_failures: int
    total_rule_changes: int
    total_api_errors: int


# Rule models
class RuleStatusResponse(BaseModel):
    """Live redirect rule status fetched from Cloudflare."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    enabled: bool
    status: str
    last_modified: str | None = None


class HistoryEntryResponse(BaseModel):
    """One redirect rule transition."""

    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime
    event: Literal["enabled", "disabled"]
    reason: str
    consecutive_failures: int
    consecutive_successes: int


class HistoryResponse(BaseModel):
    """Redirect rule transitions, newest first."""

    history: list[HistoryEntryResponse]
    count: int


class SimulateResponse(BaseModel):
    """Result of a simulated failover or recovery."""

    success: bool
    message: str
    redirect_rule_enabled: bool
    consecutive_failures: int
    consecutive_successes: int


# Counter models
class ResetResponse(BaseModel):
    """Result of a counter reset."""

    success: bool
    message: str


# Maintenance models
class MaintenanceModeRequest(BaseModel):
    """Request model for switching maintenance mode."""

    enabled: bool
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)


class MaintenanceModeResponse(BaseModel):
    """Maintenance mode after the change."""

    success: bool
    maintenance_mode: bool
    reason: str | None


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class MaintenanceWindowRequest(BaseModel):
    """Request model for scheduling a maintenance window.

    Accepts both ``start_time``/``end_time`` and ``startTime``/``endTime``.
    A window whose start is after its end is rejected.
    """

    start_time: datetime = Field(validation_alias=AliasChoices("start_time", "startTime"))
    end_time: datetime = Field(validation_alias=AliasChoices("end_time", "endTime"))
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> MaintenanceWindowRequest:
        if self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")
        return self


class MaintenanceWindowsResponse(BaseModel):
    """All scheduled maintenance windows."""

    windows: list[MaintenanceWindowResponse]
    count: int


class DeleteResponse(BaseModel):
    """Response model for a deleted maintenance window."""

    success: bool
    id: str
