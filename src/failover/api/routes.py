"""Route handlers for the management API.

Handlers are plain (synchronous) functions: every one of them calls into the
blocking state store or rule client, so FastAPI runs them in its worker
thread pool instead of on the event loop.

Routes:
- GET    /health                       (no auth)
- GET    /status
- GET    /metrics
- GET    /redirect-rule
- GET    /redirect-rule-history
- POST   /simulate-failover
- POST   /simulate-recovery
- POST   /reset-counters
- POST   /reset-all-metrics
- POST   /maintenance-mode
- POST   /maintenance-window
- GET    /maintenance-windows
- DELETE /maintenance-window/{window_id}
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry

from failover.api.models import (
    DeleteResponse,
    HistoryEntryResponse,
    HistoryResponse,
    MaintenanceModeRequest,
    MaintenanceModeResponse,
    MaintenanceWindowRequest,
    MaintenanceWindowResponse,
    MaintenanceWindowsResponse,
    ResetResponse,
    RuleStatusResponse,
    SimulateResponse,
    StatusResponse,
    ThresholdsResponse,
)
from failover.api.security import BearerTokenAuth, RateLimiter
from failover.config import Config
from failover.engine import CycleOutcome, FailoverEngine
from failover.health import HealthChecker
from failover.maintenance import is_suppressed, is_window_active
from failover.metrics import METRICS_CONTENT_TYPE, render_metrics
from failover.rule_client import RuleController
from failover.store import Clock, MaintenanceWindow, MonitorStateStore

logger = logging.getLogger(__name__)


def _window_response(window: MaintenanceWindow, now: datetime) -> MaintenanceWindowResponse:
    return MaintenanceWindowResponse(
        id=window.id,
        start_time=window.start_time,
        end_time=window.end_time,
        reason=window.reason,
        is_active=is_window_active(window, now),
    )


def create_routes(
    config: Config,
    store: MonitorStateStore,
    engine: FailoverEngine,
    rule_controller: RuleController,
    health_checker: HealthChecker,
    registry: CollectorRegistry,
    clock: Clock,
) -> APIRouter:
    """Create the API routes.

    Args:
        config: Application configuration.
        store: The shared state store.
        engine: Decision engine, used for simulated transitions.
        rule_controller: Client used for live rule status.
        health_checker: Computes the /health report.
        registry: Prometheus registry rendered by /metrics.
        clock: Source of the current time.

    Returns:
        An APIRouter with all routes configured.
    """
    rate_limiter = RateLimiter(limit=config.rate_limit_per_minute)
    require_token = BearerTokenAuth(config.api_token)
    logger.debug(
        "create_routes: rate limit %d requests/minute per client",
        rate_limiter.limit,
    )

    router = APIRouter()
    protected = APIRouter(dependencies=[Depends(rate_limiter), Depends(require_token)])

    @router.get("/health")
    def health() -> JSONResponse:
        """Report whether the monitor itself is working.

        Returns 503 when the state store is unavailable.

        Example response:
            {
                "status": "healthy",
                "durable_state_available": true,
                "last_cron_execution": "2026-05-01T12:00:00+00:00",
                "uptime_seconds": 3600.0
            }
        """
        report = health_checker.check()
        return JSONResponse(content=report.to_dict(), status_code=report.http_status)

    @protected.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        """Return current counters, thresholds, rule state and maintenance state."""
        state = store.get()
        now = clock()
        next_check = (
            state.last_check_time + timedelta(seconds=config.poll_interval)
            if state.last_check_time is not None
            else None
        )
        return StatusResponse(
            monitor_url=config.monitor_url,
            consecutive_failures=state.consecutive_failures,
            consecutive_successes=state.consecutive_successes,
            last_check_time=state.last_check_time,
            next_check_time=next_check,
            redirect_rule_enabled=state.rule_active,
            maintenance_mode=state.maintenance_mode_active,
            maintenance_mode_reason=state.maintenance_mode_reason,
            maintenance_suppressed=is_suppressed(state, now),
            scheduled_maintenance_windows=[
                _window_response(w, now) for w in state.scheduled_windows
            ],
            api_calls_suspended=state.api_calls_suspended,
            thresholds=ThresholdsResponse(
                failure=config.failure_threshold,
                recovery=config.recovery_threshold,
                timeout_seconds=config.timeout_seconds,
            ),
            total_checks=state.total_checks,
            total_successes=state.total_successes,
            total_failures=state.total_failures,
            total_rule_changes=state.total_rule_changes,
            total_api_errors=state.total_api_errors,
        )

    @protected.get("/metrics")
    def metrics() -> Response:
        """Prometheus text exposition of the monitor counters."""
        return Response(content=render_metrics(registry), media_type=METRICS_CONTENT_TYPE)

    @protected.get("/redirect-rule", response_model=RuleStatusResponse)
    def redirect_rule() -> RuleStatusResponse:
        """Fetch the live redirect rule status from Cloudflare.

        Raises:
            HTTPException: 502 if Cloudflare could not be reached or the rule
                was not found.
        """
        info = rule_controller.get_rule_status(config.redirect_rule_id)
        if info is None:
            raise HTTPException(status_code=502, detail="Failed to fetch redirect rule status")
        return RuleStatusResponse.model_validate(info)

    @protected.get("/redirect-rule-history", response_model=HistoryResponse)
    def redirect_rule_history() -> HistoryResponse:
        """Return recorded rule transitions, newest first."""
        history = store.get().rule_change_history
        return HistoryResponse(
            history=[HistoryEntryResponse.model_validate(entry) for entry in history],
            count=len(history),
        )

    def _simulate(enabled: bool) -> SimulateResponse:
        report = engine.simulate_failover() if enabled else engine.simulate_recovery()
        action = "enable" if enabled else "disable"

        if report.outcome is CycleOutcome.SUSPENDED:
            raise HTTPException(
                status_code=409,
                detail="Rule changes are suspended after an authentication failure; restart required",
            )
        if report.outcome is CycleOutcome.AUTH_FAILED:
            raise HTTPException(
                status_code=500,
                detail="Cloudflare API authentication failed; rule changes are now suspended",
            )
        if report.outcome is not (
            CycleOutcome.RULE_ENABLED if enabled else CycleOutcome.RULE_DISABLED
        ):
            raise HTTPException(
                status_code=500,
                detail=f"Failed to {action} redirect rule via Cloudflare API",
            )

        return SimulateResponse(
            success=True,
            message=f"Redirect rule {action}d successfully",
            redirect_rule_enabled=report.state.rule_active,
            consecutive_failures=report.state.consecutive_failures,
            consecutive_successes=report.state.consecutive_successes,
        )

    @protected.post("/simulate-failover", response_model=SimulateResponse)
    def simulate_failover() -> SimulateResponse:
        """Force the failure counter to threshold and enable the redirect rule."""
        return _simulate(enabled=True)

    @protected.post("/simulate-recovery", response_model=SimulateResponse)
    def simulate_recovery() -> SimulateResponse:
        """Force the success counter to threshold and disable the redirect rule."""
        return _simulate(enabled=False)

    @protected.post("/reset-counters", response_model=ResetResponse)
    def reset_counters() -> ResetResponse:
        """Zero the consecutive failure and success counters."""
        store.reset_consecutive_counters()
        logger.info("Consecutive counters reset via API")
        return ResetResponse(success=True, message="Consecutive counters reset")

    @protected.post("/reset-all-metrics", response_model=ResetResponse)
    def reset_all_metrics() -> ResetResponse:
        """Zero the consecutive counters and every cumulative metric."""
        store.reset_all_metrics()
        logger.info("All counters and metrics reset via API")
        return ResetResponse(success=True, message="All counters and metrics reset")

    @protected.post("/maintenance-mode", response_model=MaintenanceModeResponse)
    def maintenance_mode(body: MaintenanceModeRequest) -> MaintenanceModeResponse:
        """Switch explicit maintenance mode on or off."""
        state = store.set_maintenance_mode(body.enabled, body.reason)
        logger.info(
            "Maintenance mode %s via API (reason: %s)",
            "enabled" if state.maintenance_mode_active else "disabled",
            state.maintenance_mode_reason,
        )
        return MaintenanceModeResponse(
            success=True,
            maintenance_mode=state.maintenance_mode_active,
            reason=state.maintenance_mode_reason,
        )

    @protected.post(
        "/maintenance-window",
        response_model=MaintenanceWindowResponse,
        status_code=201,
    )
    def create_maintenance_window(body: MaintenanceWindowRequest) -> MaintenanceWindowResponse:
        """Schedule a maintenance window."""
        window = MaintenanceWindow(
            id=str(uuid.uuid4()),
            start_time=body.start_time,
            end_time=body.end_time,
            reason=body.reason,
        )
        store.add_maintenance_window(window)
        logger.info(
            "Scheduled maintenance window %s from %s to %s",
            window.id,
            window.start_time.isoformat(),
            window.end_time.isoformat(),
        )
        return _window_response(window, clock())

    @protected.get("/maintenance-windows", response_model=MaintenanceWindowsResponse)
    def list_maintenance_windows() -> MaintenanceWindowsResponse:
        """List scheduled maintenance windows with their active flag."""
        state = store.get()
        now = clock()
        windows = [_window_response(w, now) for w in state.scheduled_windows]
        return MaintenanceWindowsResponse(windows=windows, count=len(windows))

    @protected.delete("/maintenance-window/{window_id}", response_model=DeleteResponse)
    def delete_maintenance_window(window_id: str) -> DeleteResponse:
        """Delete a scheduled maintenance window.

        Unknown ids raise MaintenanceWindowNotFoundError, mapped to 404.
        """
        store.remove_maintenance_window(window_id)
        logger.info("Deleted maintenance window %s", window_id)
        return DeleteResponse(success=True, id=window_id)

    router.include_router(protected)
    return router


__all__ = ["create_routes"]
