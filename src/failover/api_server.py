"""Background uvicorn server for the management API.

The API runs in a daemon thread next to the cycle scheduler so that a single
process both monitors the site and answers operator requests.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uvicorn
    from starlette.types import ASGIApp

from failover.logging import get_logger

logger = get_logger(__name__)

# Seconds to wait for uvicorn to report that it is serving
STARTUP_TIMEOUT = 5.0

# Seconds to wait for the server thread to exit on shutdown
SHUTDOWN_JOIN_TIMEOUT = 5.0


class ApiServer:
    """Runs the management API in a background thread.

    Example:
        app = create_app(config, store, engine, rule_client)
        server = ApiServer(host="127.0.0.1", port=8080)
        server.start(app)

        # ... run the scheduler ...

        server.shutdown()
    """

    def __init__(self, host: str, port: int) -> None:
        """Initialize the API server.

        Args:
            host: The host address to bind to.
            port: The port to listen on.
        """
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_running(self) -> bool:
        """Check if the server is currently serving."""
        return self._server is not None and self._server.started

    def start(self, app: ASGIApp) -> None:
        """Start serving in a background thread.

        Blocks until uvicorn reports it has started, or STARTUP_TIMEOUT
        elapses, whichever comes first.

        Args:
            app: The ASGI application to serve.
        """
        import uvicorn

        config = uvicorn.Config(
            app=app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        server = self._server

        self._thread = threading.Thread(
            target=server.run,
            name="api-server",
            daemon=True,
        )
        self._thread.start()

        start_wait = time.monotonic()
        while not server.started:
            if not self._thread.is_alive():
                logger.error("API server thread exited during startup")
                break
            if time.monotonic() - start_wait > STARTUP_TIMEOUT:
                logger.warning("API server startup timed out, continuing anyway")
                break
            time.sleep(0.05)

        if server.started:
            logger.info("API server listening on http://%s:%d", self._host, self._port)

    def shutdown(self) -> None:
        """Ask uvicorn to exit and wait for the server thread."""
        if self._server is None:
            return

        logger.info("Shutting down API server...")
        self._server.should_exit = True

        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=SHUTDOWN_JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("API server thread did not terminate gracefully")

        logger.info("API server shutdown complete")


__all__ = ["ApiServer"]
