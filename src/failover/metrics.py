"""Prometheus exposition of the monitor's counters.

Values are read from the state store on every scrape, so the exposition
always matches what /status reports and survives process restarts with the
persisted state. A dedicated CollectorRegistry is used to avoid the global
default registry (and duplicate registration across tests).
"""

from __future__ import annotations

from collections.abc import Iterator

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from failover.store import MonitorStateStore

# Re-exported for the /metrics route
METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


class MonitorStateCollector(Collector):
    """Collector that reports counters from the current MonitorState."""

    def __init__(self, store: MonitorStateStore) -> None:
        self._store = store

    def collect(self) -> Iterator[Metric]:
        """Yield one metric family per counter and gauge.

        Raises:
            StoreUnavailableError: If the state cannot be read.
        """
        state = self._store.get()

        yield CounterMetricFamily(
            "health_checks_total",
            "Total number of health checks performed",
            value=state.total_checks,
        )
        yield CounterMetricFamily(
            "successes_total",
            "Total number of successful health checks",
            value=state.total_successes,
        )
        yield CounterMetricFamily(
            "failures_total",
            "Total number of failed health checks",
            value=state.total_failures,
        )
        yield CounterMetricFamily(
            "redirect_rule_changes_total",
            "Total number of redirect rule transitions",
            value=state.total_rule_changes,
        )
        yield CounterMetricFamily(
            "api_errors_total",
            "Total number of failed rule-management API operations",
            value=state.total_api_errors,
        )

        yield GaugeMetricFamily(
            "consecutive_failures",
            "Current consecutive failed health checks",
            value=state.consecutive_failures,
        )
        yield GaugeMetricFamily(
            "consecutive_successes",
            "Current consecutive successful health checks",
            value=state.consecutive_successes,
        )
        yield GaugeMetricFamily(
            "redirect_rule_enabled",
            "Whether the redirect rule is engaged (1) or not (0)",
            value=int(state.rule_active),
        )
        yield GaugeMetricFamily(
            "maintenance_mode_active",
            "Whether explicit maintenance mode is on",
            value=int(state.maintenance_mode_active),
        )
        yield GaugeMetricFamily(
            "api_calls_suspended",
            "Whether rule changes are suspended after an authentication failure",
            value=int(state.api_calls_suspended),
        )


def create_registry(store: MonitorStateStore) -> CollectorRegistry:
    """Create a registry exposing the monitor state.

    Args:
        store: State store to read on each scrape.

    Returns:
        A CollectorRegistry with the monitor collector registered.
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(MonitorStateCollector(store))
    return registry


def render_metrics(registry: CollectorRegistry) -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(registry)


__all__ = [
    "METRICS_CONTENT_TYPE",
    "MonitorStateCollector",
    "create_registry",
    "render_metrics",
]
