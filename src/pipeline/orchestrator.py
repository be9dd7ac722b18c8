"""Fixed-cadence perception-to-action loop."""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from src.analysis.anomaly import AnomalyClassifier
from src.analysis.state_tracker import StateTracker
from src.automation.buttons import format_buttons
from src.automation.input_transport import InputTransport
from src.automation.strategy import SoftResetStrategy
from src.capture.frame_source import FrameSource
from src.capture.rectifier import FrameRectifier
from src.capture.screen_locator import ScreenLocator
from src.models import ActionType, AnomalyResult, Decision, HuntStatistics, OrchestratorConfig

logger = logging.getLogger(__name__)

FALLBACK_FPS = 30.0


class StopReason(Enum):
    NONE = "none"
    OPERATOR = "operator"
    ALERT = "alert"
    ABORT = "abort"
    WATCHDOG = "watchdog"
    ERROR = "error"
    SOURCE_FAILED = "source_failed"
    SOURCE_EXHAUSTED = "source_exhausted"
    FRAME_LIMIT = "frame_limit"

    @property
    def is_success(self) -> bool:
        return self in (
            StopReason.OPERATOR,
            StopReason.ALERT,
            StopReason.SOURCE_EXHAUSTED,
            StopReason.FRAME_LIMIT,
        )


class Orchestrator:
    """Drives grab -> locate/rectify -> track -> classify -> decide -> execute -> watchdog.

    Single-threaded; ``stop`` may be called from a signal handler or another
    thread and takes effect at the next tick boundary.
    """

    def __init__(
        self,
        source: FrameSource,
        rectifier: FrameRectifier,
        tracker: StateTracker,
        strategy: SoftResetStrategy,
        transport: Optional[InputTransport] = None,
        config: Optional[OrchestratorConfig] = None,
        locator: Optional[ScreenLocator] = None,
        classifier: Optional[AnomalyClassifier] = None,
        console_address: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._rectifier = rectifier
        self._tracker = tracker
        self._strategy = strategy
        self._transport = transport
        self._config = config or OrchestratorConfig()
        self._locator = locator
        self._classifier = classifier
        self._address = console_address
        self._sleep = sleep
        self._clock = clock
        self._running = False
        self._stop_requested = threading.Event()
        self._stop_reason = StopReason.NONE
        self._ticks = 0
        self._errors = 0
        self._watchdog_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stop_reason(self) -> StopReason:
        return self._stop_reason

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def tracker(self) -> StateTracker:
        return self._tracker

    @property
    def transport(self) -> Optional[InputTransport]:
        return self._transport

    def stats(self) -> HuntStatistics:
        return dataclasses.replace(
            self._strategy.stats(),
            errors=self._errors,
            watchdog_recoveries=self._watchdog_count,
        )

    def stop(self) -> None:
        self._stop_requested.set()
        self._halt(StopReason.OPERATOR)

    def _halt(self, reason: StopReason) -> None:
        if self._stop_reason is StopReason.NONE:
            self._stop_reason = reason
        self._running = False

    def run(self) -> HuntStatistics:
        fps = self._config.target_fps
        if fps <= 0:
            logger.error("Invalid target FPS (%.1f); using %.1f", fps, FALLBACK_FPS)
            fps = FALLBACK_FPS
        interval = 1.0 / fps
        if self._stop_requested.is_set():
            logger.info("Stop requested before start; not running")
            self._stop_reason = StopReason.OPERATOR
            self._stop_requested.clear()
            return self.stats()
        self._stop_reason = StopReason.NONE
        self._running = True
        logger.info("Orchestrator starting at %.1f FPS (dry_run=%s)", fps, self._config.dry_run)

        if not self._source.open():
            logger.critical("Failed to open frame source: %s", self._source.describe())
            self._halt(StopReason.SOURCE_FAILED)
            return self.stats()

        if self._transport is not None and not self._transport.is_connected():
            if not self._transport.connect(self._address):
                logger.warning("Input transport did not connect (%s)", self._transport.describe())

        try:
            while self._running and not self._stop_requested.is_set():
                started = self._clock()
                self.tick()
                self._ticks += 1
                if self._config.max_frames and self._ticks >= self._config.max_frames:
                    logger.info("Reached frame limit (%d)", self._config.max_frames)
                    self._halt(StopReason.FRAME_LIMIT)
                if not self._running:
                    break
                remaining = interval - (self._clock() - started)
                if remaining > 0:
                    self._sleep(remaining)
        except Exception as e:
            self._errors += 1
            logger.critical("Fatal error in tick %d: %s", self._ticks, e, exc_info=True)
            self._halt(StopReason.ERROR)
        finally:
            if self._stop_requested.is_set():
                self._halt(StopReason.OPERATOR)
                self._stop_requested.clear()
            self._running = False
            self._release_inputs()
            self._source.close()

        stats = self.stats()
        logger.info(
            "Orchestrator stopped (%s). Final stats: %d encounters, %d anomalies, "
            "%d watchdog recoveries, %d errors",
            self._stop_reason.value,
            stats.encounters,
            stats.anomalies_found,
            stats.watchdog_recoveries,
            stats.errors,
        )
        return stats

    def tick(self) -> None:
        frame = self._source.grab()
        if frame is None:
            if not self._source.is_open():
                logger.info("Frame source exhausted")
                self._halt(StopReason.SOURCE_EXHAUSTED)
            return
        if frame.is_empty:
            return

        if self._locator is not None:
            self._locator.apply_to(self._rectifier, frame.image)
        rectified = self._rectifier.process(frame.image)
        if rectified is None:
            logger.debug("Frame #%d: screen not located", frame.sequence)
            return

        transition = self._tracker.update(rectified.region_sets())
        if transition is not None:
            logger.info(
                "Frame #%d: state %s -> %s", frame.sequence, transition.from_state, transition.to_state
            )

        verdict: Optional[AnomalyResult] = None
        if (
            self._classifier is not None
            and self._config.anomaly_roi
            and self._tracker.current_definition.anomaly_check
        ):
            region = rectified.find_region(self._config.anomaly_roi)
            if region is not None and region.size:
                verdict = self._classifier.classify(region)
                logger.debug("Anomaly verdict: %s (%.2f)", verdict.verdict.value, verdict.confidence)

        decision = self._strategy.tick(
            self._tracker.current_state, self._tracker.time_in_state(), verdict
        )
        self._execute(decision)

        if self._running:
            self._check_watchdog()

    def _execute(self, decision: Decision) -> None:
        if decision.action is ActionType.SEND_INPUT:
            self._send(decision)
        elif decision.action is ActionType.ALERT:
            logger.warning("Alert: %s", decision.reason)
            self._halt(StopReason.ALERT)
        elif decision.action is ActionType.ABORT:
            logger.error("Abort: %s", decision.reason)
            self._halt(StopReason.ABORT)

    def _send(self, decision: Decision) -> None:
        buttons = format_buttons(decision.command.buttons) or "none"
        if self._config.dry_run:
            logger.info("[dry-run] %s (buttons=%s)", decision.reason, buttons)
            return
        if self._transport is None or not self._transport.is_connected():
            logger.debug("No connected transport; dropping %s", buttons)
            return
        logger.debug("Sending %s (%s)", buttons, decision.reason)
        if not self._transport.send(decision.command):
            self._errors += 1
            return
        if decision.delay_ms:
            self._sleep(decision.delay_ms / 1000.0)
            self._transport.release_all()

    def _check_watchdog(self) -> None:
        if not self._tracker.is_stuck():
            return
        self._watchdog_count += 1
        state = self._tracker.current_state
        logger.warning(
            "Watchdog: stuck in '%s' for %.1fs", state, self._tracker.time_in_state()
        )
        if self._config.watchdog_policy != "recover":
            self._halt(StopReason.WATCHDOG)
            return

        recovery = self._strategy.on_stuck()
        self._execute(recovery)
        if recovery.action is ActionType.ABORT:
            return
        self._tracker.force_state(self._tracker.initial_state)
        if self._classifier is not None:
            self._classifier.reset()

    def _release_inputs(self) -> None:
        if self._transport is None or not self._transport.is_connected():
            return
        try:
            self._transport.release_all()
        except Exception as e:
            logger.warning("Failed to release inputs during shutdown: %s", e)
