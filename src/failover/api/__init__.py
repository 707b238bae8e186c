"""Management HTTP API for the failover sentinel.

Key components:
- create_app: FastAPI application factory with the error-shape handlers
- create_routes: Route factory for the status, rule and maintenance endpoints
- RateLimiter / BearerTokenAuth: Dependencies guarding every route but /health
"""

from failover.api.app import create_app
from failover.api.routes import create_routes
from failover.api.security import BearerTokenAuth, RateLimiter

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "BearerTokenAuth",
    "RateLimiter",
    "create_app",
    "create_routes",
]
