"""
Unit tests for the ethics/ending state machine
"""

import random

import pytest

from accrual import advance
from endings import apply_ethics_delta, evaluate_ending
from simulation import Simulation
from state import EndingKind, create_default_state


def reform_ready_state():
    state = create_default_state()
    state.ethical_choices_made = 5
    state.ethics_score = 60.0
    state.currency = 1000.0
    return state


def loop_ready_state():
    state = create_default_state()
    state.ethics_score = 80.0
    state.currency = 2000.0
    state.total_units_produced = 1000
    return state


class TestEthicsDelta:

    def test_amplified_only_when_requested(self):
        upgrade_path = create_default_state()
        event_path = create_default_state()

        apply_ethics_delta(upgrade_path, -10.0, amplify_worsening=True)
        apply_ethics_delta(event_path, -10.0, amplify_worsening=False)

        assert upgrade_path.ethics_score == pytest.approx(85.0)
        assert event_path.ethics_score == pytest.approx(90.0)

    def test_clamped_to_range(self):
        state = create_default_state()
        applied = apply_ethics_delta(state, 25.0, amplify_worsening=True)
        assert state.ethics_score == 100.0
        assert applied == 0.0

        apply_ethics_delta(state, -500.0, amplify_worsening=False)
        assert state.ethics_score == 0.0
        assert state.lowest_ethics_score == 0.0


class TestEvaluateEnding:

    def test_ongoing_by_default(self):
        assert evaluate_ending(create_default_state()) is EndingKind.ONGOING

    def test_reform(self):
        state = reform_ready_state()
        assert evaluate_ending(state) is EndingKind.REFORM
        assert not state.is_collapsing

    def test_loop_records_start(self):
        state = loop_ready_state()
        assert evaluate_ending(state, now=42.0) is EndingKind.LOOP
        assert state.loop_started_at == 42.0

    def test_reform_has_priority_over_loop(self):
        state = loop_ready_state()
        state.ethical_choices_made = 5
        assert evaluate_ending(state) is EndingKind.REFORM

    def test_collapse_has_priority_over_everything(self):
        state = reform_ready_state()
        state.ethics_score = 0.0
        assert evaluate_ending(state) is EndingKind.COLLAPSE
        assert state.is_collapsing

    def test_collapse_is_final(self):
        state = create_default_state()
        state.ethics_score = 0.0
        evaluate_ending(state)

        state.ethics_score = 60.0
        state.ethical_choices_made = 5
        state.currency = 5000.0

        assert evaluate_ending(state) is EndingKind.COLLAPSE

    def test_reform_not_replaced_by_loop(self):
        state = reform_ready_state()
        evaluate_ending(state)

        state.ethics_score = 80.0
        state.currency = 2000.0
        state.total_units_produced = 1000
        assert evaluate_ending(state) is EndingKind.REFORM

    def test_collapse_supersedes_reform(self):
        state = reform_ready_state()
        evaluate_ending(state)
        state.ethics_score = 0.0
        assert evaluate_ending(state) is EndingKind.COLLAPSE


class TestLoopInstability:

    def test_grace_period_then_decay_then_collapse(self):
        state = loop_ready_state()
        evaluate_ending(state, now=0.0)

        advance(state, 50.0)
        assert state.ethics_score == pytest.approx(80.0)

        # 100s past the 60s grace period at 0.1/s
        advance(state, 160.0)
        assert state.ethics_score == pytest.approx(70.0)
        assert state.ending_kind is EndingKind.LOOP

        advance(state, 810.0)
        assert state.ethics_score == pytest.approx(5.0)
        assert state.ending_kind is EndingKind.COLLAPSE
        assert state.is_collapsing

    def test_other_endings_do_not_decay(self):
        state = reform_ready_state()
        evaluate_ending(state, now=0.0)
        advance(state, 1000.0)
        assert state.ethics_score == pytest.approx(60.0)


def test_collapse_survives_any_sequence_of_actions():
    """Once collapsed, purchases, events and ticks never produce another ending"""
    sim = Simulation(seed=5)
    sim.state.ethics_score = 0.0
    evaluate_ending(sim.state)
    sim.state.currency = 1_000_000.0
    sim.state.total_units_produced = 5000
    sim.state.worker_count = 12

    rng = random.Random(99)
    upgrade_ids = [row["id"] for row in sim.upgrade_catalog()]
    now = 0.0
    for _ in range(300):
        now += rng.uniform(0.5, 30.0)
        sim.advance_tick(now)
        sim.ship_package()
        sim.purchase_upgrade(rng.choice(upgrade_ids), now)
        sim.state.active_event_id = "worker_unrest"
        sim.resolve_event_choice("worker_unrest.improve_conditions", now)
        assert sim.state.ending_kind is EndingKind.COLLAPSE
        assert sim.state.is_collapsing
