"""Tests for the monitor state store."""

from __future__ import annotations

import json
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from failover.exceptions import MaintenanceWindowNotFoundError, StoreUnavailableError
from failover.store import (
    HISTORY_LIMIT,
    STATE_KEY,
    InMemoryStateBackend,
    JsonFileStateBackend,
    MonitorState,
    MonitorStateStore,
)
from tests.helpers import make_window
from tests.mocks import FailingStateBackend, FakeClock, FlakySaveBackend, GatedSaveBackend


class TestInitialization:
    """Tests for first access and process start handling."""

    def test_first_access_creates_default_state(self, clock: FakeClock) -> None:
        backend = InMemoryStateBackend()
        store = MonitorStateStore(backend, clock=clock)
        try:
            state = store.get()
        finally:
            store.close()

        assert state.consecutive_failures == 0
        assert state.consecutive_successes == 0
        assert state.rule_active is False
        assert state.scheduled_windows == []
        assert state.rule_change_history == []
        assert state.process_start_time == clock.now
        # The default state is persisted on first access
        assert backend.load(STATE_KEY) is not None

    def test_initialize_keeps_first_process_start(self, clock: FakeClock) -> None:
        backend = InMemoryStateBackend()
        first = MonitorStateStore(backend, clock=clock)
        first_start = first.initialize().process_start_time
        first.close()

        clock.advance(3600)
        second = MonitorStateStore(backend, clock=clock)
        try:
            state = second.initialize()
        finally:
            second.close()

        assert state.process_start_time == first_start
        assert state.process_start_time != clock.now

    def test_initialize_clears_suspension_from_previous_process(self, clock: FakeClock) -> None:
        backend = InMemoryStateBackend()
        first = MonitorStateStore(backend, clock=clock)
        first.initialize()
        first.latch_api_suspended()
        first.close()

        second = MonitorStateStore(backend, clock=clock)
        try:
            state = second.initialize()
        finally:
            second.close()

        assert state.api_calls_suspended is False


class TestCounters:
    """Tests for streak and total bookkeeping."""

    def test_record_failure_updates_streak_and_totals(
        self, store: MonitorStateStore, clock: FakeClock
    ) -> None:
        state = store.record_failure()
        assert state.consecutive_failures == 1
        assert state.consecutive_successes == 0
        assert state.total_checks == 1
        assert state.total_failures == 1
        assert state.last_check_time == clock.now

    def test_success_resets_failure_streak(self, store: MonitorStateStore) -> None:
        store.record_failure()
        store.record_failure()
        state = store.record_success()
        assert state.consecutive_failures == 0
        assert state.consecutive_successes == 1
        assert state.total_checks == 3
        assert state.total_successes == 1
        assert state.total_failures == 2

    def test_streaks_are_never_both_nonzero(self, store: MonitorStateStore) -> None:
        for healthy in [False, True, True, False, False, True]:
            state = store.record_success() if healthy else store.record_failure()
            assert state.consecutive_failures == 0 or state.consecutive_successes == 0

    def test_reset_consecutive_counters_keeps_totals(self, store: MonitorStateStore) -> None:
        store.record_failure()
        store.record_failure()
        state = store.reset_consecutive_counters()
        assert state.consecutive_failures == 0
        assert state.consecutive_successes == 0
        assert state.total_checks == 2
        assert state.total_failures == 2

    def test_reset_all_metrics_clears_totals_but_not_history(
        self, store: MonitorStateStore
    ) -> None:
        store.record_failure()
        store.record_rule_transition(True, "test")
        store.increment_api_errors()
        state = store.reset_all_metrics()
        assert state.total_checks == 0
        assert state.total_failures == 0
        assert state.total_rule_changes == 0
        assert state.total_api_errors == 0
        assert state.consecutive_failures == 0
        assert len(state.rule_change_history) == 1
        assert state.rule_active is True

    def test_force_counters_to_threshold(self, store: MonitorStateStore) -> None:
        store.record_success()
        state = store.force_counters_to_threshold(failing=True, threshold=3)
        assert state.consecutive_failures == 3
        assert state.consecutive_successes == 0

        state = store.force_counters_to_threshold(failing=False, threshold=2)
        assert state.consecutive_successes == 2
        assert state.consecutive_failures == 0


class TestRuleTransitions:
    """Tests for rule transition history."""

    def test_transition_prepends_entry(self, store: MonitorStateStore) -> None:
        store.force_counters_to_threshold(failing=True, threshold=3)
        store.record_rule_transition(True, "first")
        state = store.record_rule_transition(False, "second")

        assert state.rule_active is False
        assert state.total_rule_changes == 2
        assert [e.reason for e in state.rule_change_history] == ["second", "first"]
        assert state.rule_change_history[1].event == "enabled"
        assert state.rule_change_history[1].consecutive_failures == 3

    def test_repeated_transition_is_not_recorded(self, store: MonitorStateStore) -> None:
        store.record_rule_transition(True, "first")
        state = store.record_rule_transition(True, "again")

        assert state.rule_active is True
        assert state.total_rule_changes == 1
        assert [e.reason for e in state.rule_change_history] == ["first"]

    def test_history_is_capped(self, store: MonitorStateStore) -> None:
        for i in range(HISTORY_LIMIT + 5):
            state = store.record_rule_transition(i % 2 == 0, f"change {i}")

        assert len(state.rule_change_history) == HISTORY_LIMIT
        assert state.rule_change_history[0].reason == f"change {HISTORY_LIMIT + 4}"
        assert state.rule_change_history[-1].reason == "change 5"
        assert state.total_rule_changes == HISTORY_LIMIT + 5


class TestMaintenance:
    """Tests for maintenance mode and windows."""

    def test_maintenance_mode_reason_cleared_on_disable(self, store: MonitorStateStore) -> None:
        state = store.set_maintenance_mode(True, "deploy")
        assert state.maintenance_mode_active is True
        assert state.maintenance_mode_reason == "deploy"

        state = store.set_maintenance_mode(False, "ignored")
        assert state.maintenance_mode_active is False
        assert state.maintenance_mode_reason is None

    def test_add_and_remove_window(self, store: MonitorStateStore, clock: FakeClock) -> None:
        window = make_window(clock.now)
        state = store.add_maintenance_window(window)
        assert state.scheduled_windows == [window]

        state = store.remove_maintenance_window(window.id)
        assert state.scheduled_windows == []

    def test_add_window_replaces_same_id(self, store: MonitorStateStore, clock: FakeClock) -> None:
        store.add_maintenance_window(make_window(clock.now, window_id="w1", reason="old"))
        state = store.add_maintenance_window(make_window(clock.now, window_id="w1", reason="new"))
        assert len(state.scheduled_windows) == 1
        assert state.scheduled_windows[0].reason == "new"

    def test_remove_unknown_window_raises(self, store: MonitorStateStore) -> None:
        with pytest.raises(MaintenanceWindowNotFoundError) as exc_info:
            store.remove_maintenance_window("missing")
        assert exc_info.value.window_id == "missing"

    def test_sweep_removes_only_expired_windows(
        self, store: MonitorStateStore, clock: FakeClock
    ) -> None:
        expired = make_window(clock.now - timedelta(hours=2))
        ending_now = make_window(clock.now - timedelta(hours=1))
        future = make_window(clock.now + timedelta(hours=1))
        for window in (expired, ending_now, future):
            store.add_maintenance_window(window)

        state = store.sweep_expired_windows()

        assert [w.id for w in state.scheduled_windows] == [ending_now.id, future.id]


class TestSnapshots:
    """Tests that callers never share the live state."""

    def test_mutating_snapshot_does_not_affect_store(self, store: MonitorStateStore) -> None:
        snapshot = store.get()
        snapshot.consecutive_failures = 99
        snapshot.rule_change_history.append(None)  # type: ignore[arg-type]

        state = store.get()
        assert state.consecutive_failures == 0
        assert state.rule_change_history == []

    def test_concurrent_operations_are_serialized(self, store: MonitorStateStore) -> None:
        def worker() -> None:
            for _ in range(25):
                store.record_failure()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = store.get()
        assert state.consecutive_failures == 100
        assert state.total_checks == 100


class TestUnavailableStore:
    """Tests for backend failures."""

    def test_load_failure_raises_store_unavailable(self, clock: FakeClock) -> None:
        store = MonitorStateStore(FailingStateBackend(), clock=clock)
        try:
            with pytest.raises(StoreUnavailableError):
                store.get()
        finally:
            store.close()

    def test_failed_save_leaves_state_unchanged(self, clock: FakeClock) -> None:
        backend = FlakySaveBackend()
        store = MonitorStateStore(backend, clock=clock)
        try:
            store.record_failure()
            backend.fail_saves = True
            with pytest.raises(StoreUnavailableError):
                store.record_failure()
            backend.fail_saves = False
            assert store.get().consecutive_failures == 1
        finally:
            store.close()

    def test_timed_out_queued_operation_is_discarded(self, clock: FakeClock) -> None:
        backend = GatedSaveBackend()
        store = MonitorStateStore(backend, clock=clock, operation_timeout=0.2)
        try:
            store.initialize()
            backend.gate.clear()
            # Running when the caller gives up, so it still commits
            with pytest.raises(StoreUnavailableError):
                store.record_failure()
            # Still queued behind it, so it is dropped
            with pytest.raises(StoreUnavailableError):
                store.record_success()
            backend.gate.set()
            state = store.get()
        finally:
            backend.gate.set()
            store.close()

        assert state.consecutive_failures == 1
        assert state.consecutive_successes == 0
        assert state.total_successes == 0
        assert state.total_checks == 1

    def test_closed_store_raises(self, clock: FakeClock) -> None:
        store = MonitorStateStore(InMemoryStateBackend(), clock=clock)
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.get()

    def test_corrupt_document_raises(self, clock: FakeClock) -> None:
        backend = InMemoryStateBackend()
        backend.save(STATE_KEY, {"consecutive_failures": 1})
        store = MonitorStateStore(backend, clock=clock)
        try:
            with pytest.raises(StoreUnavailableError):
                store.get()
        finally:
            store.close()


class TestJsonFileStateBackend:
    """Tests for the JSON file backend."""

    def test_missing_file_loads_none(self, tmp_path: Path) -> None:
        backend = JsonFileStateBackend(tmp_path / "state.json")
        assert backend.load(STATE_KEY) is None

    def test_state_survives_restart(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "nested" / "state.json"
        first = MonitorStateStore(JsonFileStateBackend(path), clock=clock)
        first.initialize()
        first.record_failure()
        first.record_rule_transition(True, "down")
        first.add_maintenance_window(make_window(clock.now, window_id="w1"))
        first.close()

        second = MonitorStateStore(JsonFileStateBackend(path), clock=clock)
        try:
            state = second.get()
        finally:
            second.close()

        assert state.consecutive_failures == 1
        assert state.rule_active is True
        assert state.rule_change_history[0].reason == "down"
        assert state.scheduled_windows[0].id == "w1"
        assert state.scheduled_windows[0].start_time == clock.now

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        backend = JsonFileStateBackend(path)
        backend.save(STATE_KEY, {"a": 1})
        backend.save(STATE_KEY, {"a": 2})

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
        assert json.loads(path.read_text()) == {STATE_KEY: {"a": 2}}

    def test_non_object_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            JsonFileStateBackend(path).load(STATE_KEY)


class TestMonitorStateSerialization:
    """Tests for MonitorState dictionary conversion."""

    def test_naive_timestamps_are_read_as_utc(self) -> None:
        state = MonitorState.from_dict({"process_start_time": "2026-05-01T12:00:00"})
        assert state.process_start_time.utcoffset() == timedelta(0)
