"""Failover decision engine.

The engine is a small state machine whose state lives entirely in the store:
the two consecutive counters plus ``rule_active``. Each cycle:

1. stamps the cron time and sweeps expired maintenance windows
2. reads state and stops if API calls are suspended (no probe, no counters)
3. evaluates maintenance suppression on the swept state
4. probes the monitored URL
5. records the success or failure (this always updates the counters)
6. if the streak has reached its threshold and the rule is in the opposite
   state, toggles the rule unless suppressed

A successful toggle is recorded in history and both streaks are reset. A
failed toggle counts an API error; an authentication failure latches API
suspension for the rest of the process lifetime.

Thresholds compare with ``>=`` so a streak exactly equal to the threshold
triggers. Comparing only against the opposite rule state prevents repeated
identical transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from failover.config import Config
from failover.logging import get_logger, log_cycle_summary
from failover.maintenance import is_suppressed, suppression_reason
from failover.prober import ProbeResult, Prober
from failover.rule_client import RuleController, RuleUpdateResult
from failover.store import Clock, MonitorState, MonitorStateStore, utc_now

logger = get_logger(__name__)

SIMULATED_FAILOVER_REASON = "Simulated failover - manually triggered via API"
SIMULATED_RECOVERY_REASON = "Simulated recovery - manually triggered via API"


def failure_reason(threshold: int) -> str:
    """History reason for an automatic failover."""
    return f"Failure threshold reached ({threshold} consecutive failures)"


def recovery_reason(threshold: int) -> str:
    """History reason for an automatic recovery."""
    return f"Recovery threshold reached ({threshold} consecutive successes)"


class CycleOutcome(Enum):
    """What a cycle (or a simulated transition) ended up doing."""

    SUSPENDED = "suspended"
    NO_ACTION = "no_action"
    SUPPRESSED = "suppressed"
    RULE_ENABLED = "rule_enabled"
    RULE_DISABLED = "rule_disabled"
    API_ERROR = "api_error"
    AUTH_FAILED = "auth_failed"


@dataclass(frozen=True)
class CycleReport:
    """Result of one decision cycle.

    Attributes:
        outcome: What the cycle did.
        state: State snapshot after the cycle's last store operation.
        probe: Probe result, or None when no probe ran.
    """

    outcome: CycleOutcome
    state: MonitorState
    probe: ProbeResult | None = None

    @property
    def transitioned(self) -> bool:
        """Whether the redirect rule was switched."""
        return self.outcome in (CycleOutcome.RULE_ENABLED, CycleOutcome.RULE_DISABLED)


class FailoverEngine:
    """Runs decision cycles and manual overrides against the shared store.

    The engine holds no mutable state of its own; overlapping cycles are
    safe because every mutation is a single store operation.
    """

    def __init__(
        self,
        config: Config,
        store: MonitorStateStore,
        prober: Prober,
        rule_controller: RuleController,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Application configuration (thresholds, URL, rule id).
            store: The single-writer state store.
            prober: Health prober for the monitored URL.
            rule_controller: Client that toggles the redirect rule.
            clock: Source of the current time, used for suppression checks.
        """
        self._config = config
        self._store = store
        self._prober = prober
        self._rule_controller = rule_controller
        self._clock = clock

    def run_cycle(self) -> CycleReport:
        """Run one probe-and-decide cycle.

        Returns:
            CycleReport describing the outcome.

        Raises:
            StoreUnavailableError: If the store cannot be read or written.
                The cycle is abandoned and the next scheduled cycle starts fresh.
        """
        self._store.stamp_cron_time()
        self._store.sweep_expired_windows()
        state = self._store.get()

        if state.api_calls_suspended:
            logger.warning(
                "API calls are suspended after an authentication failure; "
                "skipping cycle until the process is restarted"
            )
            report = CycleReport(outcome=CycleOutcome.SUSPENDED, state=state)
            self._log_report(report)
            return report

        now = self._clock()
        suppressed = is_suppressed(state, now)
        reason_suppressed = suppression_reason(state, now) if suppressed else None

        probe = self._prober.probe(self._config.monitor_url, self._config.timeout_seconds)

        if probe.healthy:
            updated = self._store.record_success()
            logger.debug("Recovery count: %d", updated.consecutive_successes)
            crossed = (
                updated.consecutive_successes >= self._config.recovery_threshold
                and updated.rule_active
            )
            target_enabled = False
            reason = recovery_reason(self._config.recovery_threshold)
        else:
            updated = self._store.record_failure()
            logger.debug("Failure count: %d", updated.consecutive_failures)
            crossed = (
                updated.consecutive_failures >= self._config.failure_threshold
                and not updated.rule_active
            )
            target_enabled = True
            reason = failure_reason(self._config.failure_threshold)

        if not crossed:
            report = CycleReport(outcome=CycleOutcome.NO_ACTION, state=updated, probe=probe)
        elif suppressed:
            logger.info(
                "Would %s redirect rule (%s) but rule changes are suppressed by %s",
                "enable" if target_enabled else "disable",
                reason,
                reason_suppressed,
                extra={"event": "enabled" if target_enabled else "disabled"},
            )
            report = CycleReport(outcome=CycleOutcome.SUPPRESSED, state=updated, probe=probe)
        else:
            logger.info("%s, %s redirect rule", reason, "enabling" if target_enabled else "disabling")
            report = self._apply_transition(target_enabled, reason, probe)

        self._log_report(report)
        return report

    def simulate_failover(self) -> CycleReport:
        """Force the failure streak to threshold and enable the rule."""
        return self._simulate(enabled=True)

    def simulate_recovery(self) -> CycleReport:
        """Force the success streak to threshold and disable the rule."""
        return self._simulate(enabled=False)

    def _simulate(self, enabled: bool) -> CycleReport:
        state = self._store.get()
        if state.api_calls_suspended:
            logger.warning("Refusing simulated transition: API calls are suspended")
            return CycleReport(outcome=CycleOutcome.SUSPENDED, state=state)

        threshold = self._config.failure_threshold if enabled else self._config.recovery_threshold
        self._store.force_counters_to_threshold(failing=enabled, threshold=threshold)
        reason = SIMULATED_FAILOVER_REASON if enabled else SIMULATED_RECOVERY_REASON
        logger.info(reason)
        report = self._apply_transition(enabled, reason, probe=None)
        self._log_report(report)
        return report

    def _apply_transition(
        self, enabled: bool, reason: str, probe: ProbeResult | None
    ) -> CycleReport:
        """Drive the rule controller and record its outcome in the store."""
        result = self._rule_controller.set_rule_enabled(self._config.redirect_rule_id, enabled)

        if result is RuleUpdateResult.SUCCESS:
            self._store.record_rule_transition(enabled, reason)
            state = self._store.reset_consecutive_counters()
            logger.info(
                "Counters reset after %s redirect rule",
                "enabling" if enabled else "disabling",
                extra={"event": "enabled" if enabled else "disabled"},
            )
            outcome = CycleOutcome.RULE_ENABLED if enabled else CycleOutcome.RULE_DISABLED
        elif result is RuleUpdateResult.AUTHENTICATION_FAILED:
            state = self._store.latch_api_suspended()
            logger.error("Suspending all further rule changes until restart")
            outcome = CycleOutcome.AUTH_FAILED
        else:
            state = self._store.increment_api_errors()
            outcome = CycleOutcome.API_ERROR

        return CycleReport(outcome=outcome, state=state, probe=probe)

    def _log_report(self, report: CycleReport) -> None:
        log_cycle_summary(
            logger,
            outcome=report.outcome.name,
            healthy=report.probe.healthy if report.probe is not None else None,
            consecutive_failures=report.state.consecutive_failures,
            consecutive_successes=report.state.consecutive_successes,
            rule_active=report.state.rule_active,
        )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "CycleOutcome",
    "CycleReport",
    "FailoverEngine",
    "SIMULATED_FAILOVER_REASON",
    "SIMULATED_RECOVERY_REASON",
    "failure_reason",
    "recovery_reason",
]
