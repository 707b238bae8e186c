"""Maintenance suppression checks.

Pure functions over a MonitorState snapshot. Expired windows are removed by
MonitorStateStore.sweep_expired_windows, not here.
"""

from __future__ import annotations

from datetime import datetime

from failover.store import MaintenanceWindow, MonitorState


def is_window_active(window: MaintenanceWindow, now: datetime) -> bool:
    """Check whether ``now`` falls inside a window, bounds inclusive.

    A window whose start is after its end contains no instant and is never
    active.
    """
    return window.start_time <= now <= window.end_time


def active_windows(state: MonitorState, now: datetime) -> list[MaintenanceWindow]:
    """Return the scheduled windows that are active at ``now``."""
    return [w for w in state.scheduled_windows if is_window_active(w, now)]


def is_suppressed(state: MonitorState, now: datetime) -> bool:
    """Check whether rule changes are currently suppressed.

    Args:
        state: Monitor state snapshot.
        now: Current time (timezone-aware).

    Returns:
        True if explicit maintenance mode is on or any scheduled window
        is active.
    """
    if state.maintenance_mode_active:
        return True
    return any(is_window_active(w, now) for w in state.scheduled_windows)


def suppression_reason(state: MonitorState, now: datetime) -> str | None:
    """Describe why rule changes are suppressed, or None if they are not."""
    if state.maintenance_mode_active:
        reason = state.maintenance_mode_reason or "no reason given"
        return f"maintenance mode ({reason})"
    for window in active_windows(state, now):
        reason = window.reason or "no reason given"
        return f"maintenance window {window.id} ({reason})"
    return None


__all__ = [
    "active_windows",
    "is_suppressed",
    "is_window_active",
    "suppression_reason",
]
