"""Tests for the monitor health report."""

from __future__ import annotations

from failover.health import HealthChecker, HealthStatus
from failover.store import MonitorStateStore
from tests.mocks import FailingStateBackend, FakeClock


class TestHealthChecker:
    """Tests for HealthChecker.check."""

    def test_degraded_before_first_cycle(self, store: MonitorStateStore, clock: FakeClock) -> None:
        report = HealthChecker(store, clock=clock).check()
        assert report.status is HealthStatus.DEGRADED
        assert report.store_available is True
        assert report.last_cron_time is None
        assert report.http_status == 200

    def test_healthy_after_recent_cycle(self, store: MonitorStateStore, clock: FakeClock) -> None:
        store.stamp_cron_time()
        clock.advance(90)

        report = HealthChecker(store, clock=clock).check()

        assert report.status is HealthStatus.HEALTHY
        assert report.uptime_seconds == 90.0

    def test_unhealthy_when_cycle_is_stale(
        self, store: MonitorStateStore, clock: FakeClock
    ) -> None:
        store.stamp_cron_time()
        clock.advance(121)

        report = HealthChecker(store, clock=clock).check()

        assert report.status is HealthStatus.UNHEALTHY
        assert report.http_status == 200

    def test_exactly_at_limit_is_healthy(self, store: MonitorStateStore, clock: FakeClock) -> None:
        store.stamp_cron_time()
        clock.advance(120)
        assert HealthChecker(store, clock=clock).check().status is HealthStatus.HEALTHY

    def test_store_unavailable(self, clock: FakeClock) -> None:
        failing = MonitorStateStore(FailingStateBackend(), clock=clock)
        try:
            report = HealthChecker(failing, clock=clock).check()
        finally:
            failing.close()

        assert report.status is HealthStatus.UNHEALTHY
        assert report.store_available is False
        assert report.http_status == 503
        assert "disk unavailable" in (report.error or "")


class TestHealthReportToDict:
    """Tests for the /health body."""

    def test_keys(self, store: MonitorStateStore, clock: FakeClock) -> None:
        store.stamp_cron_time()
        body = HealthChecker(store, clock=clock).check().to_dict()
        assert body == {
            "status": "healthy",
            "durable_state_available": True,
            "last_cron_execution": clock.now.isoformat(),
            "uptime_seconds": 0.0,
        }

    def test_error_included_when_unavailable(self, clock: FakeClock) -> None:
        failing = MonitorStateStore(FailingStateBackend(), clock=clock)
        try:
            body = HealthChecker(failing, clock=clock).check().to_dict()
        finally:
            failing.close()
        assert body["status"] == "unhealthy"
        assert body["durable_state_available"] is False
        assert "error" in body
