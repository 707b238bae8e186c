"""FastAPI application factory for the management API.

Every handled error is returned as ``{"error": "<message>"}``:

- HTTPException: the exception's status code and detail
- request validation failures: 422, with the validation details
- StoreUnavailableError: 503
- MaintenanceWindowNotFoundError: 404
- anything else: 500
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from failover.api.routes import create_routes
from failover.config import Config
from failover.engine import FailoverEngine
from failover.exceptions import MaintenanceWindowNotFoundError, StoreUnavailableError
from failover.health import HealthChecker
from failover.metrics import create_registry
from failover.rule_client import RuleController
from failover.store import Clock, MonitorStateStore, utc_now

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "Invalid request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableError
    ) -> JSONResponse:
        logger.error("State store unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": "State store unavailable"})

    @app.exception_handler(MaintenanceWindowNotFoundError)
    async def window_not_found_handler(
        request: Request, exc: MaintenanceWindowNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error while serving %s: %s",
            request.url.path,
            exc,
            exc_info=exc,
            extra={"error_type": type(exc).__name__},
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    config: Config,
    store: MonitorStateStore,
    engine: FailoverEngine,
    rule_controller: RuleController,
    *,
    clock: Clock = utc_now,
) -> FastAPI:
    """Create and configure the management API application.

    Args:
        config: Application configuration (token, rate limit, thresholds).
        store: The shared state store.
        engine: Decision engine, used for simulated transitions.
        rule_controller: Client used for live rule status.
        clock: Source of the current time.

    Returns:
        A configured FastAPI application.
    """
    app = FastAPI(
        title="Site Failover Sentinel",
        description="Management API for the site failover monitor",
        version="0.1.0",
    )
    _register_exception_handlers(app)

    health_checker = HealthChecker(store, clock=clock)
    registry = create_registry(store)

    routes = create_routes(
        config,
        store,
        engine,
        rule_controller,
        health_checker,
        registry,
        clock,
    )
    app.include_router(routes)

    return app


__all__ = ["create_app"]
