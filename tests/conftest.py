"""Shared pytest fixtures for failover sentinel tests.

Mocks live in tests/mocks.py and builders in tests/helpers.py; the fixtures
here wire them together and make sure store worker threads are shut down.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from failover.config import Config
from failover.store import InMemoryStateBackend, MonitorStateStore
from tests.helpers import make_config
from tests.mocks import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """A manually advanced clock starting at 2026-05-01T12:00:00Z."""
    return FakeClock()


@pytest.fixture
def config() -> Config:
    """Valid configuration with failure threshold 3 and recovery threshold 2."""
    return make_config()


@pytest.fixture
def store(clock: FakeClock) -> Iterator[MonitorStateStore]:
    """An initialized in-memory store using the fake clock."""
    state_store = MonitorStateStore(InMemoryStateBackend(), clock=clock)
    state_store.initialize()
    yield state_store
    state_store.close()
