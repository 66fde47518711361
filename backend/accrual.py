"""
Accrual Engine

Converts elapsed time into whole production units and revenue. Fractional
output carries over in production_accumulator between calls, so calling
advance() once over an interval or several times over its parts produces
the same number of units.

Nothing here reads the wall clock: callers pass `now` explicitly.
"""

import logging
import math
import random
from typing import Optional

from config import CONFIG
from effects import drain_pending
from endings import apply_loop_instability, evaluate_ending
from state import SimulationState

logger = logging.getLogger(__name__)


def effective_rate(state: SimulationState) -> float:
    """Automatic production in units per second."""
    worker_output = state.base_worker_rate * state.worker_count * state.worker_efficiency_multiplier
    system_output = state.base_system_rate * state.automation_efficiency_multiplier
    return worker_output + system_output


def unit_sale_value(state: SimulationState) -> float:
    """Revenue per unit, discounted when customers are unhappy."""
    floor = CONFIG.accrual.satisfaction_value_floor
    return state.unit_value * (floor + (1.0 - floor) * state.customer_satisfaction)


def _extract_whole_units(state: SimulationState) -> int:
    whole_units = math.floor(state.production_accumulator)
    if whole_units > 0:
        state.total_units_produced += whole_units
        state.earn(whole_units * unit_sale_value(state))
        state.production_accumulator -= whole_units
    # Guard against float drift at the boundary
    if state.production_accumulator >= 1.0 or state.production_accumulator < 0.0:
        state.production_accumulator = min(max(state.production_accumulator, 0.0), math.nextafter(1.0, 0.0))
    return whole_units


def ship_package(state: SimulationState) -> int:
    """Manual shipment. Returns the whole units shipped."""
    state.production_accumulator += state.base_manual_rate
    shipped = _extract_whole_units(state)
    state.clamp_bounds()
    return shipped


def _apply_morale_decay(state: SimulationState, elapsed: float) -> None:
    cfg = CONFIG.accrual
    if state.corporate_virtue < cfg.low_virtue_threshold and state.worker_morale > cfg.morale_decay_floor:
        decay = elapsed * cfg.morale_decay_rate * (cfg.low_virtue_threshold - state.corporate_virtue)
        state.worker_morale = max(cfg.morale_decay_floor, state.worker_morale - decay)


def roll_worker_quitting(state: SimulationState, elapsed: float, rng: random.Random) -> int:
    """
    Demoralized workers may walk out.

    The chance scales with how far morale sits below the threshold and with
    elapsed time. Between one worker and quit_max_fraction of the workforce
    leaves, never dropping below quit_min_workers.
    """
    cfg = CONFIG.accrual
    if state.worker_morale >= cfg.quit_morale_threshold or state.worker_count <= cfg.quit_min_workers:
        return 0

    severity = (cfg.quit_morale_threshold - state.worker_morale) / cfg.quit_morale_threshold
    chance = min(1.0, severity * cfg.quit_base_chance * elapsed)
    if rng.random() >= chance:
        return 0

    max_quit = max(1, int(state.worker_count * cfg.quit_max_fraction))
    quitting = rng.randint(1, max_quit)
    quitting = min(quitting, state.worker_count - cfg.quit_min_workers)
    state.worker_count -= quitting
    logger.debug("%d workers quit (morale %.2f)", quitting, state.worker_morale)
    return quitting


def advance(state: SimulationState, now: float, rng: Optional[random.Random] = None) -> SimulationState:
    """
    Move the simulation forward to `now`.

    Zero or negative elapsed time only refreshes the timestamp. Otherwise
    production accrues, due scheduled effects fire, morale drifts, and the
    loop ending may destabilize. Worker quitting is only rolled when a
    random source is supplied.

    Returns:
        The same state object, mutated in place
    """
    elapsed = now - state.last_tick_timestamp
    state.last_tick_timestamp = now
    state.workers_quit_last_tick = 0
    if elapsed <= 0:
        return state

    state.production_accumulator += effective_rate(state) * elapsed
    _extract_whole_units(state)

    if drain_pending(state, now, rng):
        evaluate_ending(state, now)
    _apply_morale_decay(state, elapsed)

    if rng is not None:
        state.workers_quit_last_tick = roll_worker_quitting(state, elapsed, rng)

    apply_loop_instability(state, now, elapsed)
    state.clamp_bounds()
    return state
