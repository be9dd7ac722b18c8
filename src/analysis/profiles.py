"""Built-in hunt graphs and construction of the runtime state graph from config."""
from __future__ import annotations

import logging
from typing import Optional

from src.analysis.detection import TemplateMatcher, build_rule
from src.models import ConfigError, FsmConfig, StateConfig, StateDefinition, StateGraph

logger = logging.getLogger(__name__)

# (state id, next states, max dwell seconds, anomaly check)
XY_STARTER_SR = (
    ("load_game", ("game_start", "soft_reset"), 15, False),
    ("game_start", ("cutscene_start", "soft_reset"), 10, False),
    ("cutscene_start", ("cutscene", "soft_reset"), 10, False),
    ("cutscene", ("starter_pick", "soft_reset"), 30, False),
    ("starter_pick", ("nickname_prompt", "soft_reset"), 15, False),
    ("nickname_prompt", ("post_selection", "soft_reset"), 10, False),
    ("post_selection", ("cutscene_end", "soft_reset"), 15, False),
    ("cutscene_end", ("party_menu", "soft_reset"), 15, False),
    ("party_menu", ("pokemon_summary", "soft_reset"), 10, False),
    ("pokemon_summary", ("soft_reset",), 20, True),
    ("soft_reset", ("load_game",), 15, False),
)

PROFILES = {
    "xy_starter_sr": ("load_game", XY_STARTER_SR),
}


def _definition(
    config: StateConfig,
    matcher: TemplateMatcher,
    next_states=None,
    max_dwell_s: Optional[float] = None,
    anomaly_check: Optional[bool] = None,
) -> StateDefinition:
    rules = {}
    if config.top is not None:
        rules["top"] = build_rule(config.top, matcher)
    if config.bottom is not None:
        rules["bottom"] = build_rule(config.bottom, matcher)
    return StateDefinition(
        id=config.id,
        rules=rules,
        max_dwell_s=config.max_dwell_s if max_dwell_s is None else max_dwell_s,
        reachable=frozenset(config.next_states if next_states is None else next_states),
        anomaly_check=config.anomaly_check if anomaly_check is None else anomaly_check,
    )


def build_profile_graph(
    profile: str, fsm: FsmConfig, matcher: Optional[TemplateMatcher] = None
) -> StateGraph:
    """Graph for a built-in profile; ``fsm.states`` supplies the detection rules of each state."""
    entry = PROFILES.get(profile)
    if entry is None:
        raise ConfigError(f"unknown hunt profile '{profile}' (available: {', '.join(sorted(PROFILES))})")
    initial, layout = entry
    matcher = matcher or TemplateMatcher()
    states = []
    for state_id, next_states, max_dwell_s, anomaly_check in layout:
        config = fsm.states.get(state_id)
        if config is None or not config.has_detection:
            raise ConfigError(
                f"missing detection params for required state '{state_id}' of profile '{profile}'"
            )
        states.append(_definition(config, matcher, next_states, max_dwell_s, anomaly_check))
    extra = sorted(set(fsm.states) - {row[0] for row in layout})
    if extra:
        logger.warning("Profile '%s' ignores configured states: %s", profile, ", ".join(extra))
    return StateGraph(states, initial)


def build_state_graph(
    fsm: FsmConfig, profile: str = "", matcher: Optional[TemplateMatcher] = None
) -> StateGraph:
    """Build the immutable graph for a run, from a built-in profile or from ``fsm.states``."""
    if profile:
        return build_profile_graph(profile, fsm, matcher)
    if not fsm.states:
        raise ConfigError("fsm.states is empty and no hunt profile is selected")
    matcher = matcher or TemplateMatcher()
    return StateGraph(
        [_definition(config, matcher) for config in fsm.states.values()],
        fsm.initial_state,
    )
