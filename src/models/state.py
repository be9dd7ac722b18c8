from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from src.models.config import ConfigError
from src.models.input import InputCommand

if TYPE_CHECKING:
    from src.analysis.detection import DetectionRule

# Dwell limit for states that do not declare one
DEFAULT_MAX_DWELL_S = 120.0


@dataclass(frozen=True)
class StateDefinition:
    id: str
    # screen name ("top" / "bottom") -> detection rule; empty means never detected
    rules: Mapping[str, "DetectionRule"] = field(default_factory=dict)
    max_dwell_s: Optional[float] = None
    reachable: frozenset[str] = frozenset()
    anomaly_check: bool = False

    @property
    def dwell_limit_s(self) -> float:
        return DEFAULT_MAX_DWELL_S if self.max_dwell_s is None else float(self.max_dwell_s)


class StateGraph:
    """Immutable set of state definitions plus the initial state id."""

    def __init__(self, states: Iterable[StateDefinition], initial_state: str):
        by_id: dict[str, StateDefinition] = {}
        for state in states:
            if state.id in by_id:
                raise ConfigError(f"duplicate state id '{state.id}'")
            by_id[state.id] = state
        if initial_state not in by_id:
            raise ConfigError(f"initial state '{initial_state}' is not defined")
        for state in by_id.values():
            missing = sorted(s for s in state.reachable if s not in by_id)
            if missing:
                raise ConfigError(
                    f"state '{state.id}' lists undefined next states: {', '.join(missing)}"
                )
        self._states = by_id
        self._initial_state = initial_state

    @property
    def initial_state(self) -> str:
        return self._initial_state

    def __contains__(self, state_id: object) -> bool:
        return state_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __getitem__(self, state_id: str) -> StateDefinition:
        return self._states[state_id]

    def get(self, state_id: str) -> Optional[StateDefinition]:
        return self._states.get(state_id)

    def ids(self) -> list[str]:
        return list(self._states)

    def reachable(self, state_id: str) -> frozenset[str]:
        state = self._states.get(state_id)
        return state.reachable if state is not None else frozenset()


@dataclass(frozen=True)
class StateTransition:
    from_state: str
    to_state: str
    timestamp: float


class Verdict(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    UNCERTAIN = "uncertain"


@dataclass(frozen=True)
class AnomalyResult:
    verdict: Verdict = Verdict.UNCERTAIN
    confidence: float = 0.0
    method: str = ""
    details: str = ""


class ActionType(Enum):
    WAIT = "wait"
    SEND_INPUT = "send_input"
    CHECK_ANOMALY = "check_anomaly"
    ALERT = "alert"
    ABORT = "abort"


@dataclass(frozen=True)
class Decision:
    action: ActionType
    reason: str = ""
    delay_ms: Optional[int] = None
    command: InputCommand = field(default_factory=InputCommand)


@dataclass(frozen=True)
class HuntStatistics:
    """Snapshot of run counters. Timestamps come from the strategy clock (0.0 = never)."""
    encounters: int = 0
    anomalies_found: int = 0
    errors: int = 0
    watchdog_recoveries: int = 0
    started_at: float = 0.0
    last_encounter_at: float = 0.0
    anomaly_found_at: float = 0.0
    avg_cycle_s: float = 0.0

    def to_dict(self) -> dict:
        return {
            "encounters": self.encounters,
            "anomalies_found": self.anomalies_found,
            "errors": self.errors,
            "watchdog_recoveries": self.watchdog_recoveries,
            "started_at": self.started_at,
            "last_encounter_at": self.last_encounter_at,
            "anomaly_found_at": self.anomaly_found_at,
            "avg_cycle_s": self.avg_cycle_s,
        }
