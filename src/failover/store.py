"""Persistent monitor state and its single-writer store.

The monitor keeps exactly one MonitorState. Every read and mutation goes
through MonitorStateStore, which runs each named operation on one dedicated
worker thread:

    load current state -> apply a pure transform -> persist -> return snapshot

Operations are therefore serialized with respect to each other no matter how
many scheduler cycles or API requests call into the store concurrently, and
no caller ever holds the live state object (snapshots are deep copies).

Persistence is delegated to a StateBackend. JsonFileStateBackend writes the
state atomically (temp file + ``os.replace``); InMemoryStateBackend keeps it
in process memory.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, Protocol

from failover.exceptions import MaintenanceWindowNotFoundError, StoreUnavailableError
from failover.logging import get_logger

logger = get_logger(__name__)

# Fixed key under which the single state instance is persisted
STATE_KEY = "monitor-state"

# Maximum number of rule transitions kept in history (newest first)
HISTORY_LIMIT = 50

RuleEvent = Literal["enabled", "disabled"]

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return _parse_required_time(value)


def _parse_required_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class MaintenanceWindow:
    """A scheduled period during which rule changes are suppressed.

    Attributes:
        id: Unique window identifier (UUID4 string).
        start_time: Start of the window (inclusive).
        end_time: End of the window (inclusive).
        reason: Optional operator-supplied reason.
    """

    id: str
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MaintenanceWindow:
        """Build a window from its dictionary representation."""
        return cls(
            id=str(data["id"]),
            start_time=_parse_required_time(data["start_time"]),
            end_time=_parse_required_time(data["end_time"]),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one redirect rule transition.

    Attributes:
        timestamp: When the transition was recorded.
        event: "enabled" or "disabled".
        reason: Why the transition happened.
        consecutive_failures: Failure streak at the moment of transition.
        consecutive_successes: Success streak at the moment of transition.
    """

    timestamp: datetime
    event: RuleEvent
    reason: str
    consecutive_failures: int
    consecutive_successes: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "timestamp": _format_time(self.timestamp),
            "event": self.event,
            "reason": self.reason,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        """Build an entry from its dictionary representation."""
        return cls(
            timestamp=_parse_required_time(data["timestamp"]),
            event=data["event"],
            reason=data["reason"],
            consecutive_failures=int(data["consecutive_failures"]),
            consecutive_successes=int(data["consecutive_successes"]),
        )


@dataclass
class MonitorState:
    """The single shared monitoring state.

    Invariants maintained by MonitorStateStore:
    - at most one of consecutive_failures / consecutive_successes is nonzero
    - rule_change_history is newest first and never longer than HISTORY_LIMIT
    - cumulative totals only decrease through reset_all_metrics
    - api_calls_suspended never clears while the process is running
    """

    process_start_time: datetime
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    rule_active: bool = False
    maintenance_mode_active: bool = False
    maintenance_mode_reason: str | None = None
    scheduled_windows: list[MaintenanceWindow] = field(default_factory=list)
    rule_change_history: list[HistoryEntry] = field(default_factory=list)
    total_checks: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rule_changes: int = 0
    total_api_errors: int = 0
    last_check_time: datetime | None = None
    last_cron_time: datetime | None = None
    api_calls_suspended: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "rule_active": self.rule_active,
            "maintenance_mode_active": self.maintenance_mode_active,
            "maintenance_mode_reason": self.maintenance_mode_reason,
            "scheduled_windows": [w.to_dict() for w in self.scheduled_windows],
            "rule_change_history": [h.to_dict() for h in self.rule_change_history],
            "total_checks": self.total_checks,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_rule_changes": self.total_rule_changes,
            "total_api_errors": self.total_api_errors,
            "last_check_time": _format_time(self.last_check_time),
            "last_cron_time": _format_time(self.last_cron_time),
            "process_start_time": _format_time(self.process_start_time),
            "api_calls_suspended": self.api_calls_suspended,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitorState:
        """Build a state from its dictionary representation.

        Raises:
            KeyError: If process_start_time is missing.
            ValueError: If a timestamp cannot be parsed.
        """
        return cls(
            process_start_time=_parse_required_time(data["process_start_time"]),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            consecutive_successes=int(data.get("consecutive_successes", 0)),
            rule_active=bool(data.get("rule_active", False)),
            maintenance_mode_active=bool(data.get("maintenance_mode_active", False)),
            maintenance_mode_reason=data.get("maintenance_mode_reason"),
            scheduled_windows=[
                MaintenanceWindow.from_dict(w) for w in data.get("scheduled_windows", [])
            ],
            rule_change_history=[
                HistoryEntry.from_dict(h) for h in data.get("rule_change_history", [])
            ][:HISTORY_LIMIT],
            total_checks=int(data.get("total_checks", 0)),
            total_successes=int(data.get("total_successes", 0)),
            total_failures=int(data.get("total_failures", 0)),
            total_rule_changes=int(data.get("total_rule_changes", 0)),
            total_api_errors=int(data.get("total_api_errors", 0)),
            last_check_time=_parse_time(data.get("last_check_time")),
            last_cron_time=_parse_time(data.get("last_cron_time")),
            api_calls_suspended=bool(data.get("api_calls_suspended", False)),
        )


class StateBackend(Protocol):
    """Persistence for the serialized monitor state."""

    def load(self, key: str) -> dict[str, Any] | None:
        """Return the stored document for ``key``, or None if absent."""
        ...

    def save(self, key: str, data: dict[str, Any]) -> None:
        """Persist ``data`` under ``key``, replacing any previous document."""
        ...


class InMemoryStateBackend:
    """State backend that keeps documents in process memory."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    def load(self, key: str) -> dict[str, Any] | None:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    def save(self, key: str, data: dict[str, Any]) -> None:
        self._documents[key] = copy.deepcopy(data)


class JsonFileStateBackend:
    """State backend that persists documents to a JSON file.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a crash mid-write never leaves a truncated
    state file behind.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the backend.

        Args:
            path: Location of the JSON state file. Parent directories are
                created on first write.
        """
        self._path = path

    @property
    def path(self) -> Path:
        """Get the state file path."""
        return self._path

    def load(self, key: str) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        with self._path.open(encoding="utf-8") as f:
            documents = json.load(f)
        if not isinstance(documents, dict):
            raise ValueError(f"State file {self._path} does not contain a JSON object")
        document = documents.get(key)
        return document if isinstance(document, dict) else None

    def save(self, key: str, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({key: data}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


Transform = Callable[[MonitorState, datetime], MonitorState]


class MonitorStateStore:
    """Single-writer store for the one MonitorState instance.

    Each public operation is submitted to a dedicated single-thread executor
    and runs as one indivisible read-transform-persist step. The calling
    thread blocks until the operation completes and receives a deep copy of
    the post-mutation state.

    Thread Safety:
        All operations are safe to call from any thread. Operations never
        interleave because only the store's worker thread touches the state.

    Errors:
        Backend failures and operation timeouts raise StoreUnavailableError.
        When persisting fails, the in-memory state is left unchanged. A
        timed-out operation that has not started is discarded; one that was
        already running when the caller gave up may still be applied.
    """

    def __init__(
        self,
        backend: StateBackend,
        clock: Clock = utc_now,
        operation_timeout: float = 10.0,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Persistence backend for the state document.
            clock: Source of the current time (timezone-aware UTC).
            operation_timeout: Seconds a caller waits for an operation
                before treating the store as unavailable.
        """
        self._backend = backend
        self._clock = clock
        self._operation_timeout = operation_timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="failover-store-")
        self._closed = threading.Event()
        # Only ever read or written on the worker thread
        self._state: MonitorState | None = None

    # -- actor plumbing ---------------------------------------------------

    def _run(self, name: str, transform: Transform | None) -> MonitorState:
        if self._closed.is_set():
            raise StoreUnavailableError(f"State store is closed (operation: {name})")
        try:
            future = self._executor.submit(self._apply, name, transform)
        except RuntimeError as e:
            raise StoreUnavailableError(f"State store is closed (operation: {name})") from e
        try:
            return future.result(timeout=self._operation_timeout)
        except FutureTimeoutError as e:
            # A queued operation is dropped; one already running may still commit
            discarded = future.cancel()
            logger.error(
                "State store operation %s timed out after %.1fs (%s)",
                name,
                self._operation_timeout,
                "discarded" if discarded else "already running, may still be applied",
            )
            raise StoreUnavailableError(f"State store operation {name} timed out") from e

    def _apply(self, name: str, transform: Transform | None) -> MonitorState:
        now = self._clock()
        current = self._load_or_create(now)
        if transform is None:
            return copy.deepcopy(current)

        updated = transform(copy.deepcopy(current), now)
        self._persist(updated, name)
        self._state = updated
        return copy.deepcopy(updated)

    def _load_or_create(self, now: datetime) -> MonitorState:
        if self._state is not None:
            return self._state
        try:
            document = self._backend.load(STATE_KEY)
        except (OSError, ValueError) as e:
            logger.error("Failed to load monitor state: %s", e, extra={"error_type": type(e).__name__})
            raise StoreUnavailableError(f"Failed to load monitor state: {e}") from e

        if document is None:
            state = MonitorState(process_start_time=now)
            self._persist(state, "initialize")
            logger.info("Initialized new monitor state")
        else:
            try:
                state = MonitorState.from_dict(document)
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Persisted monitor state is corrupt: %s", e)
                raise StoreUnavailableError(f"Persisted monitor state is corrupt: {e}") from e
        self._state = state
        return state

    def _persist(self, state: MonitorState, name: str) -> None:
        try:
            self._backend.save(STATE_KEY, state.to_dict())
        except (OSError, ValueError, TypeError) as e:
            logger.error(
                "Failed to persist monitor state during %s: %s",
                name,
                e,
                extra={"error_type": type(e).__name__},
            )
            raise StoreUnavailableError(f"Failed to persist monitor state: {e}") from e

    # -- lifecycle --------------------------------------------------------

    def initialize(self) -> MonitorState:
        """Prepare the state for a new process lifetime.

        Creates and persists the default state if none exists and clears an
        API suspension latched by a previous process. The persisted
        process_start_time is kept: it is set once, when the state is first
        created. Call once at startup before any cycle runs.

        Returns:
            The state after initialization.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            if state.api_calls_suspended:
                logger.warning(
                    "Clearing API suspension latched by a previous process; "
                    "verify the Cloudflare API token is valid"
                )
            return replace(state, api_calls_suspended=False)

        return self._run("initialize", transform)

    def close(self) -> None:
        """Stop the worker thread. Pending operations complete first."""
        self._closed.set()
        self._executor.shutdown(wait=True)

    # -- operations -------------------------------------------------------

    def get(self) -> MonitorState:
        """Return a snapshot of the current state."""
        return self._run("get", None)

    def record_failure(self) -> MonitorState:
        """Record an unhealthy probe.

        Increments the failure streak, zeroes the success streak, bumps the
        cumulative check and failure totals, and stamps the check time.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(
                state,
                consecutive_failures=state.consecutive_failures + 1,
                consecutive_successes=0,
                total_checks=state.total_checks + 1,
                total_failures=state.total_failures + 1,
                last_check_time=now,
            )

        return self._run("record_failure", transform)

    def record_success(self) -> MonitorState:
        """Record a healthy probe. Symmetric to record_failure."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(
                state,
                consecutive_successes=state.consecutive_successes + 1,
                consecutive_failures=0,
                total_checks=state.total_checks + 1,
                total_successes=state.total_successes + 1,
                last_check_time=now,
            )

        return self._run("record_success", transform)

    def reset_consecutive_counters(self) -> MonitorState:
        """Zero both consecutive streaks. Cumulative totals are untouched."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(state, consecutive_failures=0, consecutive_successes=0)

        return self._run("reset_consecutive_counters", transform)

    def reset_all_metrics(self) -> MonitorState:
        """Zero both consecutive streaks and every cumulative total."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(
                state,
                consecutive_failures=0,
                consecutive_successes=0,
                total_checks=0,
                total_successes=0,
                total_failures=0,
                total_rule_changes=0,
                total_api_errors=0,
            )

        return self._run("reset_all_metrics", transform)

    def record_rule_transition(self, enabled: bool, reason: str) -> MonitorState:
        """Record that the redirect rule was switched.

        Sets rule_active, prepends a history entry capturing the current
        streaks (evicting the oldest beyond HISTORY_LIMIT), and bumps the
        rule change total. When rule_active already equals ``enabled`` (two
        overlapping cycles both switched the rule) nothing is recorded.

        Args:
            enabled: New rule state.
            reason: Human-readable reason stored in the history entry.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            if state.rule_active == enabled:
                logger.debug(
                    "Redirect rule already %s, not recording a transition",
                    "enabled" if enabled else "disabled",
                )
                return state
            entry = HistoryEntry(
                timestamp=now,
                event="enabled" if enabled else "disabled",
                reason=reason,
                consecutive_failures=state.consecutive_failures,
                consecutive_successes=state.consecutive_successes,
            )
            return replace(
                state,
                rule_active=enabled,
                rule_change_history=[entry, *state.rule_change_history][:HISTORY_LIMIT],
                total_rule_changes=state.total_rule_changes + 1,
            )

        return self._run("record_rule_transition", transform)

    def set_maintenance_mode(self, enabled: bool, reason: str | None = None) -> MonitorState:
        """Switch explicit maintenance mode on or off.

        Args:
            enabled: Whether maintenance mode is active.
            reason: Reason kept while enabled; cleared when disabling.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(
                state,
                maintenance_mode_active=enabled,
                maintenance_mode_reason=reason if enabled else None,
            )

        return self._run("set_maintenance_mode", transform)

    def add_maintenance_window(self, window: MaintenanceWindow) -> MonitorState:
        """Add a scheduled window, replacing any existing window with the same id."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            windows = [w for w in state.scheduled_windows if w.id != window.id]
            windows.append(window)
            return replace(state, scheduled_windows=windows)

        return self._run("add_maintenance_window", transform)

    def remove_maintenance_window(self, window_id: str) -> MonitorState:
        """Delete a scheduled window.

        Raises:
            MaintenanceWindowNotFoundError: If no window has ``window_id``.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            windows = [w for w in state.scheduled_windows if w.id != window_id]
            if len(windows) == len(state.scheduled_windows):
                raise MaintenanceWindowNotFoundError(window_id)
            return replace(state, scheduled_windows=windows)

        return self._run("remove_maintenance_window", transform)

    def sweep_expired_windows(self) -> MonitorState:
        """Drop windows whose end time is already in the past."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            kept = [w for w in state.scheduled_windows if w.end_time >= now]
            removed = len(state.scheduled_windows) - len(kept)
            if removed:
                logger.info("Swept %d expired maintenance window(s)", removed)
            return replace(state, scheduled_windows=kept)

        return self._run("sweep_expired_windows", transform)

    def increment_api_errors(self) -> MonitorState:
        """Count one failed rule-management API operation."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(state, total_api_errors=state.total_api_errors + 1)

        return self._run("increment_api_errors", transform)

    def stamp_cron_time(self) -> MonitorState:
        """Record that the scheduled cycle fired now."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(state, last_cron_time=now)

        return self._run("stamp_cron_time", transform)

    def latch_api_suspended(self) -> MonitorState:
        """Permanently suspend rule-management API calls for this process."""

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            return replace(state, api_calls_suspended=True)

        return self._run("latch_api_suspended", transform)

    def force_counters_to_threshold(self, failing: bool, threshold: int) -> MonitorState:
        """Set one streak to ``threshold`` and zero the other.

        Administrative override used by the simulate endpoints.

        Args:
            failing: True to force the failure streak, False for the success streak.
            threshold: Value to set on the chosen streak.
        """

        def transform(state: MonitorState, now: datetime) -> MonitorState:
            if failing:
                return replace(state, consecutive_failures=threshold, consecutive_successes=0)
            return replace(state, consecutive_successes=threshold, consecutive_failures=0)

        return self._run("force_counters_to_threshold", transform)


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "HISTORY_LIMIT",
    "STATE_KEY",
    "HistoryEntry",
    "InMemoryStateBackend",
    "JsonFileStateBackend",
    "MaintenanceWindow",
    "MonitorState",
    "MonitorStateStore",
    "StateBackend",
    "utc_now",
]
