"""Mock classes for failover sentinel tests.

These mocks stand in for the network-facing components so the decision
engine, scheduler and API can be tested without real HTTP traffic.

Usage::

    from tests.mocks import FakeClock, MockProber, MockRuleController

    def test_example():
        prober = MockProber(healthy=[False, False, True])
        rule_controller = MockRuleController()
        # ... use in test ...
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from failover.prober import ProbeOutcome, ProbeResult
from failover.rule_client import RuleInfo, RuleUpdateResult
from failover.store import MonitorState


class FakeClock:
    """Manually advanced clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 5, 1, 12, 0, 0, tzinfo=UTC)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)
            return self.now


class MockProber:
    """Prober returning a scripted sequence of outcomes.

    Once the script is exhausted the last outcome repeats.
    """

    def __init__(self, healthy: Iterable[bool] = (True,)) -> None:
        self._script = list(healthy)
        self.calls: list[tuple[str, float]] = []
        self._lock = threading.Lock()

    def probe(self, url: str, timeout_seconds: float) -> ProbeResult:
        with self._lock:
            self.calls.append((url, timeout_seconds))
            index = min(len(self.calls) - 1, len(self._script) - 1)
            healthy = self._script[index]
        if healthy:
            return ProbeResult(outcome=ProbeOutcome.HEALTHY, latency_ms=12.0, status_code=200)
        return ProbeResult(
            outcome=ProbeOutcome.UNHEALTHY,
            latency_ms=12.0,
            status_code=503,
            error="HTTP 503",
        )


class MockRuleController:
    """Rule controller recording calls and returning scripted results."""

    def __init__(
        self,
        results: Iterable[RuleUpdateResult] = (RuleUpdateResult.SUCCESS,),
        rule_info: RuleInfo | None = None,
    ) -> None:
        self._results = list(results)
        self.calls: list[tuple[str, bool]] = []
        self.status_calls: list[str] = []
        self.rule_info = rule_info

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> RuleUpdateResult:
        self.calls.append((rule_id, enabled))
        index = min(len(self.calls) - 1, len(self._results) - 1)
        return self._results[index]

    def get_rule_status(self, rule_id: str) -> RuleInfo | None:
        self.status_calls.append(rule_id)
        return self.rule_info


class FailingStateBackend:
    """State backend whose every load and save raises OSError."""

    def __init__(self, message: str = "disk unavailable") -> None:
        self.message = message

    def load(self, key: str) -> dict[str, Any] | None:
        raise OSError(self.message)

    def save(self, key: str, data: dict[str, Any]) -> None:
        raise OSError(self.message)


class FlakySaveBackend:
    """In-memory backend whose saves can be switched to fail."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.fail_saves = False

    def load(self, key: str) -> dict[str, Any] | None:
        return self.documents.get(key)

    def save(self, key: str, data: dict[str, Any]) -> None:
        if self.fail_saves:
            raise OSError("write failed")
        self.documents[key] = data



class GatedSaveBackend:
    """In-memory backend whose saves block while ``gate`` is cleared."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.gate = threading.Event()
        self.gate.set()

    def load(self, key: str) -> dict[str, Any] | None:
        return self.documents.get(key)

    def save(self, key: str, data: dict[str, Any]) -> None:
        self.gate.wait(timeout=5)
        self.documents[key] = data

def state_with(**overrides: Any) -> MonitorState:
    """Build a MonitorState with a fixed start time and the given fields."""
    fields: dict[str, Any] = {
        "process_start_time": datetime(2026, 5, 1, 11, 0, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return MonitorState(**fields)
