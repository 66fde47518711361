"""
Ethics and Ending State Machine

All ethics-score changes go through apply_ethics_delta(); evaluate_ending()
is run after every ethics-affecting mutation. Priority order is fixed:
Collapse, then Reform, then Loop. Collapse is final for the session, and
Reform/Loop can only be superseded by Collapse.
"""

import logging
from typing import Optional

from config import CONFIG
from state import EndingKind, SimulationState

logger = logging.getLogger(__name__)


def apply_ethics_delta(state: SimulationState, delta: float, amplify_worsening: bool) -> float:
    """
    Apply an ethics delta and return the change actually made.

    Worsening deltas are scaled by the configured amplifier when
    amplify_worsening is set (the upgrade path); event choices pass the raw
    delta. An improving delta counts as an ethical choice.
    """
    if delta < 0 and amplify_worsening:
        delta *= CONFIG.upgrades.worsening_amplifier

    before = state.ethics_score
    state.ethics_score = max(0.0, min(100.0, state.ethics_score + delta))
    state.lowest_ethics_score = min(state.lowest_ethics_score, state.ethics_score)

    if delta > 0:
        state.ethical_choices_made += 1
    return state.ethics_score - before


def _collapse(state: SimulationState) -> None:
    state.ending_kind = EndingKind.COLLAPSE
    state.is_collapsing = True
    logger.info("Ending reached: collapse (ethics %.1f)", state.ethics_score)


def reform_reached(state: SimulationState) -> bool:
    cfg = CONFIG.endings
    return (
        state.ethical_choices_made >= cfg.reform_min_ethical_choices
        and state.ethics_score >= cfg.reform_min_ethics
        and state.currency >= cfg.reform_min_currency
    )


def loop_reached(state: SimulationState) -> bool:
    cfg = CONFIG.endings
    return (
        cfg.loop_min_ethics <= state.ethics_score <= cfg.loop_max_ethics
        and state.currency >= cfg.loop_min_currency
        and state.total_units_produced >= cfg.loop_min_units
    )


def evaluate_ending(state: SimulationState, now: Optional[float] = None) -> EndingKind:
    """Advance the ending state machine and return the current ending."""
    if state.ending_kind is EndingKind.COLLAPSE:
        state.is_collapsing = True
        return state.ending_kind

    if state.ethics_score <= CONFIG.endings.collapse_ethics_threshold:
        _collapse(state)
    elif state.ending_kind is EndingKind.ONGOING:
        if reform_reached(state):
            state.ending_kind = EndingKind.REFORM
            logger.info("Ending reached: reform (%d ethical choices)", state.ethical_choices_made)
        elif loop_reached(state):
            state.ending_kind = EndingKind.LOOP
            state.loop_started_at = now if now is not None else state.last_tick_timestamp
            logger.info("Ending reached: loop (ethics %.1f)", state.ethics_score)
    return state.ending_kind


def apply_loop_instability(state: SimulationState, now: float, elapsed: float) -> None:
    """
    The loop ending erodes ethics once its grace period has passed.

    Only the part of `elapsed` that lies beyond the grace period decays.
    Falling below collapse_below turns the loop into a collapse.
    """
    if state.ending_kind is not EndingKind.LOOP:
        return
    if state.loop_started_at is None:
        state.loop_started_at = now
        return

    cfg = CONFIG.endings
    over_grace = (now - state.loop_started_at) - cfg.loop_grace_seconds
    if over_grace <= 0:
        return

    decaying = min(elapsed, over_grace)
    state.ethics_score = max(0.0, state.ethics_score - cfg.loop_decay_per_second * decaying)
    state.lowest_ethics_score = min(state.lowest_ethics_score, state.ethics_score)

    if state.ethics_score < cfg.loop_collapse_below:
        _collapse(state)
    else:
        evaluate_ending(state, now)
