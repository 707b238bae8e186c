"""Tests for maintenance suppression checks."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from failover.maintenance import (
    active_windows,
    is_suppressed,
    is_window_active,
    suppression_reason,
)
from failover.store import MaintenanceWindow
from tests.helpers import make_window
from tests.mocks import state_with

NOW = datetime(2026, 5, 1, 12, 0, 0, tzinfo=UTC)


class TestIsWindowActive:
    """Tests for is_window_active."""

    def test_bounds_are_inclusive(self) -> None:
        window = make_window(NOW, duration=timedelta(minutes=30))
        assert is_window_active(window, NOW)
        assert is_window_active(window, NOW + timedelta(minutes=30))

    def test_outside_window(self) -> None:
        window = make_window(NOW, duration=timedelta(minutes=30))
        assert not is_window_active(window, NOW - timedelta(seconds=1))
        assert not is_window_active(window, NOW + timedelta(minutes=30, seconds=1))

    def test_inverted_window_is_never_active(self) -> None:
        window = MaintenanceWindow(
            id="inverted",
            start_time=NOW + timedelta(hours=1),
            end_time=NOW - timedelta(hours=1),
        )
        assert not is_window_active(window, NOW)


class TestIsSuppressed:
    """Tests for is_suppressed and suppression_reason."""

    def test_not_suppressed_by_default(self) -> None:
        state = state_with()
        assert is_suppressed(state, NOW) is False
        assert suppression_reason(state, NOW) is None

    def test_maintenance_mode_suppresses(self) -> None:
        state = state_with(maintenance_mode_active=True, maintenance_mode_reason="deploy")
        assert is_suppressed(state, NOW) is True
        assert suppression_reason(state, NOW) == "maintenance mode (deploy)"

    def test_active_window_suppresses(self) -> None:
        window = make_window(NOW - timedelta(minutes=10), reason=None, window_id="w1")
        state = state_with(scheduled_windows=[window])
        assert is_suppressed(state, NOW) is True
        assert suppression_reason(state, NOW) == "maintenance window w1 (no reason given)"

    def test_future_window_does_not_suppress(self) -> None:
        state = state_with(scheduled_windows=[make_window(NOW + timedelta(hours=1))])
        assert is_suppressed(state, NOW) is False
        assert active_windows(state, NOW) == []
