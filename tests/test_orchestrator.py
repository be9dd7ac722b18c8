import unittest
from typing import Optional

import numpy as np

from src.analysis.anomaly import AnomalyClassifier
from src.analysis.detection import ColorRatioRule
from src.analysis.state_tracker import StateTracker
from src.automation.buttons import Button
from src.automation.input_transport import MockInputTransport
from src.automation.strategy import SoftResetStrategy
from src.capture.frame_source import ArrayFrameSource
from src.capture.rectifier import FrameRectifier
from src.models import (
    AnomalyResult,
    HuntConfig,
    InputAction,
    InputCommand,
    OrchestratorConfig,
    RecoveryPolicy,
    RoiDefinition,
    ScreenCorners,
    StateDefinition,
    StateGraph,
    Verdict,
)
from src.pipeline import Orchestrator, StopReason

FULL_TOP = ScreenCorners((0, 0), (400, 0), (400, 240), (0, 240))
DARK_RULE = ColorRatioRule(
    roi="full",
    threshold=0.4,
    hsv_lower=(0, 0, 0),
    hsv_upper=(179, 255, 50),
    ratio_min=0.7,
    ratio_max=1.0,
)


class FakeClock:
    """Returns ``now``; advances by ``step`` after every read when ``step`` is set."""

    def __init__(self, now: float = 0.0, step: float = 0.0):
        self.now = now
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


class FixedClassifier(AnomalyClassifier):
    method = "fixed"

    def __init__(self, verdict: Verdict):
        self.verdict = verdict
        self.calls = 0
        self.resets = 0

    def classify(self, image: Optional[np.ndarray]) -> AnomalyResult:
        self.calls += 1
        return AnomalyResult(self.verdict, 1.0, self.method, "fixed")

    def reset(self) -> None:
        self.resets += 1


class FailingTransport(MockInputTransport):
    def _send(self, command: InputCommand) -> bool:
        return False


class CountingSource(ArrayFrameSource):
    opens = 0

    def open(self) -> bool:
        self.opens += 1
        return super().open()


class BrokenSource(ArrayFrameSource):
    def grab(self):
        raise RuntimeError("camera unplugged")


def dark_frame() -> np.ndarray:
    return np.full((240, 400, 3), 10, dtype=np.uint8)


class OrchestratorTestCase(unittest.TestCase):
    def build(
        self,
        frames=None,
        loop: bool = False,
        source=None,
        max_dwell_s: Optional[float] = None,
        anomaly_check: bool = False,
        hunt: Optional[HuntConfig] = None,
        config: Optional[OrchestratorConfig] = None,
        classifier: Optional[AnomalyClassifier] = None,
        transport: Optional[MockInputTransport] = None,
        tracker_clock: Optional[FakeClock] = None,
        sleep=None,
    ) -> Orchestrator:
        graph = StateGraph(
            [
                StateDefinition("unknown", reachable=frozenset({"dark_screen"})),
                StateDefinition(
                    "dark_screen",
                    rules={"top": DARK_RULE},
                    max_dwell_s=max_dwell_s,
                    anomaly_check=anomaly_check,
                ),
            ],
            "unknown",
        )
        clock = FakeClock()
        tracker = StateTracker(graph, debounce_frames=1, clock=tracker_clock or clock)
        check_states = ["dark_screen"] if anomaly_check else []
        strategy = SoftResetStrategy(hunt or HuntConfig(), check_states=check_states, clock=clock)
        rectifier = FrameRectifier(
            [
                RoiDefinition("full", "top"),
                RoiDefinition("pokemon_sprite", "top", 0.25, 0.25, 0.5, 0.5),
            ],
            top_corners=FULL_TOP,
        )
        self.transport = transport if transport is not None else MockInputTransport()
        self.sleeps: list[float] = []
        return Orchestrator(
            source=source or ArrayFrameSource(frames if frames is not None else [dark_frame()], loop=loop),
            rectifier=rectifier,
            tracker=tracker,
            strategy=strategy,
            transport=self.transport,
            config=config or OrchestratorConfig(target_fps=10),
            classifier=classifier,
            sleep=sleep or self.sleeps.append,
            clock=clock,
        )


class RunLoopTests(OrchestratorTestCase):
    def test_single_frame_source_runs_to_exhaustion(self) -> None:
        orchestrator = self.build()
        stats = orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.SOURCE_EXHAUSTED)
        self.assertTrue(orchestrator.stop_reason.is_success)
        self.assertEqual(orchestrator.tracker.current_state, "dark_screen")
        self.assertEqual(stats.errors, 0)
        self.assertFalse(orchestrator.is_running)
        self.assertEqual(self.sleeps, [0.1])
        self.assertTrue(self.transport.command_log[-1].is_neutral)

    def test_source_that_fails_to_open(self) -> None:
        orchestrator = self.build(frames=[])
        with self.assertLogs("src.pipeline.orchestrator", level="CRITICAL"):
            orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.SOURCE_FAILED)
        self.assertFalse(orchestrator.stop_reason.is_success)
        self.assertEqual(self.transport.command_log, [])

    def test_frame_limit(self) -> None:
        orchestrator = self.build(loop=True, config=OrchestratorConfig(target_fps=10, max_frames=3))
        orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.FRAME_LIMIT)
        self.assertEqual(orchestrator.ticks, 3)

    def test_operator_stop_from_sleep(self) -> None:
        def stop_on_sleep(_seconds: float) -> None:
            orchestrator.stop()

        orchestrator = self.build(loop=True, sleep=stop_on_sleep)
        orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.OPERATOR)
        self.assertTrue(self.transport.command_log[-1].is_neutral)

    def test_stop_before_run_is_honoured(self) -> None:
        source = CountingSource([dark_frame()])
        orchestrator = self.build(source=source)
        orchestrator.stop()
        orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.OPERATOR)
        self.assertEqual(orchestrator.ticks, 0)
        self.assertEqual(source.opens, 0)

        orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.SOURCE_EXHAUSTED)
        self.assertEqual(source.opens, 1)

    def test_invalid_fps_falls_back(self) -> None:
        orchestrator = self.build(loop=True, config=OrchestratorConfig(target_fps=0, max_frames=1))
        with self.assertLogs("src.pipeline.orchestrator", level="ERROR"):
            orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.FRAME_LIMIT)

    def test_exception_in_tick_stops_with_error_and_releases(self) -> None:
        source = BrokenSource([dark_frame()])
        orchestrator = self.build(source=source)
        with self.assertLogs("src.pipeline.orchestrator", level="CRITICAL"):
            stats = orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.ERROR)
        self.assertEqual(stats.errors, 1)
        self.assertFalse(source.is_open())
        self.assertEqual(self.transport.command_log, [InputCommand()])


class ActionTests(OrchestratorTestCase):
    def hunt(self) -> HuntConfig:
        return HuntConfig(actions={"dark_screen": [InputAction(buttons="A", hold_ms=100, wait_after_ms=0)]})

    def test_button_press_is_held_then_released(self) -> None:
        orchestrator = self.build(hunt=self.hunt())
        orchestrator.run()
        log = self.transport.command_log
        self.assertEqual(log[0].buttons, Button.A)
        self.assertTrue(log[1].is_neutral)
        self.assertTrue(log[-1].is_neutral)
        self.assertIn(0.1, self.sleeps)

    def test_dry_run_never_sends(self) -> None:
        orchestrator = self.build(hunt=self.hunt(), config=OrchestratorConfig(target_fps=10, dry_run=True))
        with self.assertLogs("src.pipeline.orchestrator", level="INFO") as logs:
            orchestrator.run()
        self.assertTrue(any("[dry-run]" in line for line in logs.output))
        self.assertTrue(all(command.is_neutral for command in self.transport.command_log))

    def test_failed_send_counts_an_error(self) -> None:
        orchestrator = self.build(hunt=self.hunt(), transport=FailingTransport())
        stats = orchestrator.run()
        self.assertEqual(stats.errors, 1)
        self.assertIs(orchestrator.stop_reason, StopReason.SOURCE_EXHAUSTED)


class AnomalyTests(OrchestratorTestCase):
    def test_positive_verdict_stops_with_alert(self) -> None:
        classifier = FixedClassifier(Verdict.POSITIVE)
        orchestrator = self.build(
            loop=True,
            anomaly_check=True,
            hunt=HuntConfig(shiny_check_delay_ms=0),
            classifier=classifier,
        )
        with self.assertLogs("src.pipeline.orchestrator", level="WARNING"):
            stats = orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.ALERT)
        self.assertTrue(orchestrator.stop_reason.is_success)
        self.assertEqual(stats.anomalies_found, 1)
        self.assertEqual(classifier.calls, 1)

    def test_classifier_only_runs_in_check_states(self) -> None:
        classifier = FixedClassifier(Verdict.POSITIVE)
        orchestrator = self.build(loop=True, classifier=classifier, config=OrchestratorConfig(max_frames=5))
        orchestrator.run()
        self.assertEqual(classifier.calls, 0)
        self.assertIs(orchestrator.stop_reason, StopReason.FRAME_LIMIT)


class WatchdogTests(OrchestratorTestCase):
    def test_abort_policy_stops_loop(self) -> None:
        orchestrator = self.build(loop=True, max_dwell_s=0, tracker_clock=FakeClock(step=0.01))
        with self.assertLogs("src.pipeline.orchestrator", level="WARNING"):
            stats = orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.WATCHDOG)
        self.assertFalse(orchestrator.stop_reason.is_success)
        self.assertEqual(stats.watchdog_recoveries, 1)

    def test_recover_policy_resets_then_aborts(self) -> None:
        classifier = FixedClassifier(Verdict.NEGATIVE)
        orchestrator = self.build(
            loop=True,
            max_dwell_s=0,
            tracker_clock=FakeClock(step=0.01),
            hunt=HuntConfig(recovery=RecoveryPolicy(max_retries=1, combo="L+R+START", hold_ms=200)),
            config=OrchestratorConfig(target_fps=10, watchdog_policy="recover"),
            classifier=classifier,
        )
        with self.assertLogs("src.pipeline.orchestrator", level="WARNING"):
            stats = orchestrator.run()
        self.assertIs(orchestrator.stop_reason, StopReason.ABORT)
        self.assertEqual(stats.watchdog_recoveries, 2)
        self.assertEqual(classifier.resets, 1)
        combo = Button.L | Button.R | Button.START
        self.assertEqual([c.buttons for c in self.transport.command_log].count(combo), 1)
        self.assertIn(0.2, self.sleeps)


if __name__ == "__main__":
    unittest.main()
