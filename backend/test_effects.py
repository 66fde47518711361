"""
Unit tests for the declarative effect interpreter
"""

import random

import pytest

from effects import (
    AddField,
    AddScaled,
    Delayed,
    LayOffWorkers,
    MultiplyField,
    apply_effects,
    drain_pending,
    effect_from_dict,
    effect_to_dict,
)
from state import create_default_state


class TestApplyEffects:

    def test_positive_currency_counts_toward_lifetime(self):
        state = create_default_state()
        apply_effects(state, [AddField("currency", 20.0)])
        assert state.currency == pytest.approx(20.0)
        assert state.lifetime_currency_earned == pytest.approx(20.0)

    def test_negative_currency_clamps_at_zero(self):
        state = create_default_state()
        state.currency = 300.0
        apply_effects(state, [AddField("currency", -1000.0)])
        assert state.currency == 0.0
        assert state.lifetime_currency_earned == 0.0

    def test_multiply_and_clamp_bounded_fields(self):
        state = create_default_state()
        apply_effects(state, [MultiplyField("unit_value", 1.5), AddField("worker_morale", 0.5)])
        assert state.unit_value == pytest.approx(1.5)
        assert state.worker_morale == 1.0

    def test_add_scaled_uses_current_field_value(self):
        state = create_default_state()
        state.worker_count = 5
        state.currency = 3000.0
        apply_effects(state, [AddScaled("currency", -500.0, "worker_count")])
        assert state.currency == pytest.approx(500.0)

    def test_integer_fields_stay_integers(self):
        state = create_default_state()
        apply_effects(state, [AddField("worker_count", 1), AddField("automation_level", 2)])
        assert state.worker_count == 1
        assert isinstance(state.worker_count, int)
        assert state.automation_level == 2

    def test_layoff_respects_minimum_and_pays_out(self):
        state = create_default_state()
        state.worker_count = 10
        apply_effects(state, [LayOffWorkers(fraction=1.0, min_remaining=2, payout_per_worker=50.0)])
        assert state.worker_count == 2
        assert state.currency == pytest.approx(400.0)

    def test_layoff_capped_by_max_count(self):
        state = create_default_state()
        state.worker_count = 40
        apply_effects(state, [LayOffWorkers(fraction=0.25, max_count=5)])
        assert state.worker_count == 35

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="Unknown effect field"):
            AddField("not_a_field", 1.0)

    def test_invalid_probability_rejected(self):
        with pytest.raises(ValueError, match="probability"):
            Delayed(10.0, (AddField("currency", 1.0),), probability=1.5)


class TestDelayedEffects:

    def test_certain_delay_is_scheduled(self):
        state = create_default_state()
        apply_effects(state, [Delayed(30.0, (AddField("unit_value", 1.0),))], now=10.0, source="test")

        assert len(state.pending_effects) == 1
        assert state.pending_effects[0].trigger_at == pytest.approx(40.0)
        assert state.pending_effects[0].source == "test"

    def test_probabilistic_delay_dropped_without_rng(self):
        state = create_default_state()
        apply_effects(state, [Delayed(30.0, (AddField("currency", -10.0),), probability=0.5)])
        assert state.pending_effects == []

    def test_probabilistic_delay_follows_rng(self):
        hits = 0
        rng = random.Random(7)
        for _ in range(200):
            state = create_default_state()
            apply_effects(state, [Delayed(1.0, (AddField("currency", -1.0),), probability=0.3)], rng=rng)
            hits += len(state.pending_effects)
        assert 30 <= hits <= 90

    def test_drain_fires_in_trigger_order(self):
        state = create_default_state()
        apply_effects(state, [
            Delayed(20.0, (MultiplyField("unit_value", 3.0),)),
            Delayed(10.0, (AddField("unit_value", 1.0),)),
        ])

        fired = drain_pending(state, 25.0)

        # (1 + 1) * 3, not 1 * 3 + 1
        assert fired == 2
        assert state.unit_value == pytest.approx(6.0)


def test_nested_effect_dict_form():
    effect = Delayed(50.0, (AddField("customer_satisfaction", -0.3), MultiplyField("unit_value", 0.5)), 0.4)
    data = effect_to_dict(effect)

    assert data["kind"] == "delayed"
    assert data["effects"][0] == {"kind": "add", "field": "customer_satisfaction", "amount": -0.3}
    assert effect_from_dict(data) == effect


def test_unknown_effect_kind_rejected():
    with pytest.raises(ValueError, match="Unknown effect kind"):
        effect_from_dict({"kind": "teleport"})
