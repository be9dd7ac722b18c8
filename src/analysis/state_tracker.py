"""Debounced, graph-constrained game-state tracker.

Each tick only the current state and the states it may legally move to are
scored; a different state has to win ``debounce_frames`` ticks in a row
before the transition is committed.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional

import numpy as np

from src.models import StateDefinition, StateGraph, StateTransition

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
HISTORY_PRUNE = 500
MIN_CONFIDENCE = 0.01

RegionSets = Mapping[str, Mapping[str, np.ndarray]]


class StateTracker:
    def __init__(
        self,
        graph: StateGraph,
        debounce_frames: int = 3,
        allow_any_transition: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if debounce_frames < 1:
            logger.warning("debounce_frames=%d is below 1; using 1", debounce_frames)
            debounce_frames = 1
        self._graph = graph
        self._debounce = debounce_frames
        self._allow_any = allow_any_transition
        self._clock = clock
        self._current = graph.initial_state
        self._entered_at = clock()
        self._pending: Optional[str] = None
        self._pending_count = 0
        self._history: list[StateTransition] = []
        self._last_scores: dict[str, float] = {}

    @property
    def graph(self) -> StateGraph:
        return self._graph

    @property
    def initial_state(self) -> str:
        return self._graph.initial_state

    @property
    def current_state(self) -> str:
        return self._current

    @property
    def current_definition(self) -> StateDefinition:
        return self._graph[self._current]

    @property
    def pending_state(self) -> Optional[str]:
        return self._pending

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    @property
    def last_scores(self) -> dict[str, float]:
        """Candidate confidences from the most recent ``update`` call."""
        return dict(self._last_scores)

    def time_in_state(self) -> float:
        return self._clock() - self._entered_at

    def is_stuck(self) -> bool:
        return self.time_in_state() > self.current_definition.dwell_limit_s

    def candidates(self) -> list[str]:
        if self._allow_any:
            return self._graph.ids()
        reachable = sorted(self._graph.reachable(self._current) - {self._current})
        return [self._current] + reachable

    def score_state(self, state: StateDefinition, region_sets: RegionSets) -> float:
        """Combined confidence for ``state``; every screen rule has to meet its own threshold."""
        if not state.rules:
            return 0.0
        combined = 1.0
        for screen, rule in state.rules.items():
            regions = region_sets.get(screen)
            image = regions.get(rule.roi) if regions is not None else None
            if image is None or image.size == 0:
                return 0.0
            confidence = rule.score(image)
            if confidence < rule.threshold:
                return 0.0
            combined = min(combined, confidence)
        return combined

    def update(self, region_sets: RegionSets) -> Optional[StateTransition]:
        """Score the legal candidates against this tick's regions; return a committed transition."""
        scores = {sid: self.score_state(self._graph[sid], region_sets) for sid in self.candidates()}
        self._last_scores = scores

        winner: Optional[str] = None
        best = 0.0
        for sid, confidence in scores.items():
            if confidence > best:
                winner, best = sid, confidence
        if winner is None or best < MIN_CONFIDENCE:
            self._pending = None
            self._pending_count = 0
            return None

        if winner == self._current:
            self._pending = None
            self._pending_count = 0
            return None

        if winner == self._pending:
            self._pending_count += 1
        else:
            self._pending = winner
            self._pending_count = 1
            logger.debug("Pending %s -> %s (confidence %.2f)", self._current, winner, best)

        if self._pending_count < self._debounce:
            return None
        return self._commit()

    def _commit(self) -> Optional[StateTransition]:
        target = self._pending
        self._pending = None
        self._pending_count = 0
        if target is None:
            return None
        if not self._allow_any and target not in self._graph.reachable(self._current):
            logger.warning("Illegal transition %s -> %s dropped", self._current, target)
            return None

        now = self._clock()
        transition = StateTransition(from_state=self._current, to_state=target, timestamp=now)
        self._current = target
        self._entered_at = now
        self._history.append(transition)
        if len(self._history) > HISTORY_LIMIT:
            del self._history[:HISTORY_PRUNE]
        return transition

    def force_state(self, state_id: str) -> None:
        """Jump to ``state_id`` without detection (used by watchdog recovery)."""
        if state_id not in self._graph:
            raise ValueError(f"unknown state '{state_id}'")
        logger.info("Forcing state %s -> %s", self._current, state_id)
        self._current = state_id
        self._entered_at = self._clock()
        self._pending = None
        self._pending_count = 0

    def reset(self) -> None:
        self._current = self._graph.initial_state
        self._entered_at = self._clock()
        self._pending = None
        self._pending_count = 0
        self._history.clear()
        self._last_scores = {}
