"""Site Failover Sentinel - health-check driven Cloudflare redirect failover."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("site-failover-sentinel")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from failover.app import main
from failover.engine import FailoverEngine
from failover.store import MonitorStateStore

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "FailoverEngine",
    "MonitorStateStore",
    "main",
]
