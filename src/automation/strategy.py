"""Soft-reset hunt strategy: turns the tracked game state into the next action."""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from src.automation.buttons import parse_buttons
from src.models import (
    ActionType,
    AnomalyResult,
    Decision,
    HuntConfig,
    HuntStatistics,
    InputAction,
    InputCommand,
    Verdict,
)

logger = logging.getLogger(__name__)


def build_command(combo: str) -> InputCommand:
    pad, interface = parse_buttons(combo)
    return InputCommand(buttons=pad, interface_buttons=interface)


class SoftResetStrategy:
    """Per-state step runner with an anomaly check and bounded stuck recovery.

    Each state has an ordered list of steps: pure waits (timed from when the
    step became current) and button presses. A button press is held for its
    ``hold_ms`` and blocks the next press until ``hold_ms + wait_after_ms``
    have passed. A ``repeat`` step keeps firing and never advances.

    In an anomaly-check state nothing happens until ``shiny_check_delay_ms``
    after entry; then a positive verdict raises one Alert, a negative verdict
    counts an encounter and lets the steps run, and anything else waits.
    """

    def __init__(
        self,
        config: HuntConfig,
        check_states: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._check_states = frozenset(check_states)
        self._clock = clock
        self._recovery_command = build_command(config.recovery.combo)
        self._reset_entry(None)
        self._next_send_at = 0.0
        self._consecutive_stuck = 0
        self.reset_statistics()

    @property
    def config(self) -> HuntConfig:
        return self._config

    @property
    def consecutive_stuck(self) -> int:
        return self._consecutive_stuck

    def reset_statistics(self) -> None:
        self._encounters = 0
        self._anomalies = 0
        self._recoveries = 0
        self._started_at = self._clock()
        self._last_encounter_at = 0.0
        self._anomaly_found_at = 0.0
        self._avg_cycle_s = 0.0

    def stats(self) -> HuntStatistics:
        return HuntStatistics(
            encounters=self._encounters,
            anomalies_found=self._anomalies,
            watchdog_recoveries=self._recoveries,
            started_at=self._started_at,
            last_encounter_at=self._last_encounter_at,
            anomaly_found_at=self._anomaly_found_at,
            avg_cycle_s=self._avg_cycle_s,
        )

    def _reset_entry(self, state: Optional[str]) -> None:
        self._state = state
        self._index = 0
        self._step_started_at = self._clock()
        self._verdict_settled = False
        self._alerted = False

    def tick(
        self,
        state: str,
        time_in_state_s: float,
        verdict: Optional[AnomalyResult] = None,
    ) -> Decision:
        if state != self._state:
            self._reset_entry(state)

        if self._alerted:
            return Decision(ActionType.WAIT, "anomaly already reported")

        if state in self._check_states and not self._verdict_settled:
            decision = self._check_anomaly(time_in_state_s, verdict)
            if decision is not None:
                return decision

        return self._run_steps(state)

    def _check_anomaly(self, time_in_state_s: float, verdict: Optional[AnomalyResult]) -> Optional[Decision]:
        delay_ms = self._config.shiny_check_delay_ms
        if time_in_state_s < delay_ms / 1000.0:
            return Decision(ActionType.WAIT, f"waiting {delay_ms}ms before anomaly check")
        if verdict is None or verdict.verdict is Verdict.UNCERTAIN:
            return Decision(ActionType.WAIT, "waiting for a definite anomaly verdict")

        now = self._clock()
        if verdict.verdict is Verdict.POSITIVE:
            self._anomalies += 1
            self._anomaly_found_at = now
            self._alerted = True
            logger.error(
                "ANOMALY FOUND after %d encounters (confidence=%.3f method=%s %s)",
                self._encounters,
                verdict.confidence,
                verdict.method,
                verdict.details,
            )
            return Decision(ActionType.ALERT, f"anomaly detected: {verdict.details}".strip())

        self._encounters += 1
        self._last_encounter_at = now
        self._avg_cycle_s = (now - self._started_at) / self._encounters
        self._consecutive_stuck = 0
        self._verdict_settled = True
        self._step_started_at = now
        logger.info(
            "Encounter #%d: normal (confidence=%.3f, avg cycle %.1fs)",
            self._encounters,
            verdict.confidence,
            self._avg_cycle_s,
        )
        return None

    def _run_steps(self, state: str) -> Decision:
        steps: list[InputAction] = self._config.actions.get(state) or []
        if not steps:
            return Decision(ActionType.WAIT, f"no actions for state {state}")

        now = self._clock()
        while self._index < len(steps):
            step = steps[self._index]
            if step.is_wait:
                if now - self._step_started_at < step.wait_ms / 1000.0:
                    return Decision(ActionType.WAIT, f"waiting {step.wait_ms}ms")
                self._index += 1
                self._step_started_at = now
                continue

            if now < self._next_send_at:
                return Decision(ActionType.WAIT, "waiting for next action window")
            self._next_send_at = now + (step.hold_ms + step.wait_after_ms) / 1000.0
            if not step.repeat:
                self._index += 1
                self._step_started_at = now
            return Decision(
                ActionType.SEND_INPUT,
                f"pressing {step.buttons} for state {state}",
                delay_ms=step.hold_ms,
                command=build_command(step.buttons),
            )

        return Decision(ActionType.WAIT, f"action list for {state} finished")

    def on_stuck(self) -> Decision:
        """Recovery request from the watchdog. Gives Abort once retries are exhausted."""
        self._recoveries += 1
        self._consecutive_stuck += 1
        policy = self._config.recovery
        logger.warning(
            "Stuck recovery #%d (consecutive: %d/%d)",
            self._recoveries,
            self._consecutive_stuck,
            policy.max_retries,
        )
        if self._consecutive_stuck > policy.max_retries:
            logger.error("Too many consecutive stuck recoveries; aborting")
            return Decision(ActionType.ABORT, "exceeded max stuck recoveries")
        self._next_send_at = self._clock() + policy.hold_ms / 1000.0
        return Decision(
            ActionType.SEND_INPUT,
            f"stuck recovery: {policy.combo}",
            delay_ms=policy.hold_ms,
            command=self._recovery_command,
        )
