"""
Unit tests for the upgrade economy

Tests cover:
- Pricing and repeat-purchase scaling
- Eligibility and affordability failures
- Asymmetric ethics deltas and ending re-evaluation
- Catalog integrity and legacy ids
"""

import logging

import pytest

from effects import AddField
from errors import ErrorKind
from state import EndingKind, create_default_state
from upgrades import (
    UPGRADES,
    UPGRADES_BY_ID,
    UpgradeDefinition,
    current_price,
    get_upgrade,
    is_eligible,
    legacy_upgrade_id,
    purchase,
    resolve_legacy_id,
    scaling_factor,
)


def make_upgrade(**overrides) -> UpgradeDefinition:
    params = dict(upgrade_id="test_upgrade", name="Test Upgrade", description="", base_cost=1.0)
    params.update(overrides)
    return UpgradeDefinition(**params)


class TestPricing:

    def test_non_repeatable_price_is_base_cost(self):
        state = create_default_state()
        upgrade = get_upgrade("improve_packaging")
        assert current_price(state, upgrade) == 75.0

    def test_third_hire_costs_base_times_factor_squared(self):
        state = create_default_state()
        state.currency = 1000.0
        hire = get_upgrade("hire_worker")

        assert purchase(state, hire).ok
        assert purchase(state, hire).ok

        assert current_price(state, hire) == pytest.approx(50.0 * 1.4 ** 2)
        assert current_price(state, hire) == pytest.approx(98.0)

    def test_price_strictly_increases_with_purchases(self):
        state = create_default_state()
        hire = get_upgrade("hire_worker")
        prices = []
        for _ in range(8):
            prices.append(current_price(state, hire))
            state.purchased_upgrade_ids.append("hire_worker")
        assert all(a < b for a, b in zip(prices, prices[1:]))

    def test_non_positive_factor_warns_and_stays_flat(self, caplog):
        state = create_default_state()
        upgrade = make_upgrade(repeatable=True, price_scaling_factor=0.0, base_cost=10.0)
        state.purchased_upgrade_ids.extend(["test_upgrade"] * 3)

        with caplog.at_level(logging.WARNING):
            price = current_price(state, upgrade)

        assert price == pytest.approx(10.0)
        assert "Configuration warning" in caplog.text

    def test_unset_factor_uses_configured_default(self):
        state = create_default_state()
        upgrade = make_upgrade(repeatable=True, base_cost=10.0)
        state.purchased_upgrade_ids.extend(["test_upgrade"] * 2)

        assert scaling_factor(upgrade) == 1.6
        assert current_price(state, upgrade) == pytest.approx(10.0 * 1.6 ** 2)
        assert scaling_factor(make_upgrade()) == 1.0

    def test_invalid_base_cost_rejected(self):
        with pytest.raises(ValueError, match="base_cost must be positive"):
            make_upgrade(base_cost=0.0)


class TestPurchase:

    def test_insufficient_funds_leaves_state_unchanged(self):
        state = create_default_state()
        state.currency = 40.0
        before = state.to_dict()

        result = purchase(state, make_upgrade(base_cost=50.0))

        assert not result.ok
        assert result.error is ErrorKind.INSUFFICIENT_FUNDS
        assert state.to_dict() == before

    def test_successful_purchase_deducts_and_applies(self):
        state = create_default_state()
        state.currency = 60.0

        result = purchase(state, get_upgrade("hire_worker"), now=12.0)

        assert result.ok
        assert state.currency == pytest.approx(10.0)
        assert state.worker_count == 1
        assert state.purchased_upgrade_ids == ["hire_worker"]
        assert len(state.active_repeatable_instances) == 1
        assert state.active_repeatable_instances[0].purchased_at == 12.0

    def test_repeatable_instances_have_distinct_identities(self):
        state = create_default_state()
        state.currency = 1000.0
        hire = get_upgrade("hire_worker")
        for _ in range(3):
            purchase(state, hire)

        ids = {inst.instance_id for inst in state.active_repeatable_instances}
        assert len(ids) == 3
        assert state.remove_instance(next(iter(ids)))
        assert len(state.instances_of("hire_worker")) == 2

    def test_owned_non_repeatable_not_eligible(self):
        state = create_default_state()
        state.currency = 1000.0
        packaging = get_upgrade("improve_packaging")

        assert purchase(state, packaging).ok
        result = purchase(state, packaging)

        assert result.error is ErrorKind.NOT_ELIGIBLE
        assert state.purchased_upgrade_ids.count("improve_packaging") == 1

    def test_eligibility_checked_before_funds(self):
        state = create_default_state()
        result = purchase(state, get_upgrade("extended_shifts"))
        assert result.error is ErrorKind.NOT_ELIGIBLE

    def test_perception_and_environment_deltas_applied(self):
        state = create_default_state()
        state.currency = 250.0
        state.total_units_produced = 100

        assert purchase(state, get_upgrade("rush_delivery")).ok

        assert state.public_perception == pytest.approx(60.0)
        assert state.environmental_impact == pytest.approx(5.0)


class TestEthicsDeltas:

    def test_improving_delta_applies_at_face_value(self):
        state = create_default_state()
        state.currency = 1.0
        state.ethics_score = 10.0
        state.lowest_ethics_score = 10.0

        result = purchase(state, make_upgrade(ethics_delta=20.0))

        assert result.ok
        assert state.ethics_score == pytest.approx(30.0)
        assert state.ethical_choices_made == 1

    def test_worsening_delta_is_amplified_into_collapse(self):
        state = create_default_state()
        state.currency = 1.0
        state.ethics_score = 10.0

        purchase(state, make_upgrade(ethics_delta=-10.0))

        assert state.ethics_score == 0.0
        assert state.ending_kind is EndingKind.COLLAPSE
        assert state.is_collapsing
        assert state.ethical_choices_made == 0

    def test_amplification_amount(self):
        state = create_default_state()
        state.currency = 1.0
        purchase(state, make_upgrade(ethics_delta=-8.0))
        assert state.ethics_score == pytest.approx(88.0)


class TestCatalog:

    def test_catalog_has_unique_ids(self):
        assert len(UPGRADES) == 23
        assert len(UPGRADES_BY_ID) == 23

    def test_repeatable_factors(self):
        repeatable = {u.upgrade_id: scaling_factor(u) for u in UPGRADES if u.repeatable}
        assert repeatable == {
            "hire_worker": 1.4,
            "performance_bonuses": 1.6,
            "carbon_offset_program": 1.8,
        }

    def test_gated_upgrades_describe_requirements(self):
        for upgrade in UPGRADES:
            if upgrade.eligibility is not None:
                assert upgrade.requirement_text

    def test_child_labor_gate(self):
        state = create_default_state()
        state.worker_count = 2
        upgrade = get_upgrade("child_labor_loopholes")
        assert not is_eligible(state, upgrade)
        state.ethics_score = 59.0
        assert is_eligible(state, upgrade)

    def test_worker_replacement_lays_off_down_to_two(self):
        state = create_default_state()
        state.worker_count = 10
        state.automation_level = 2
        state.ethics_score = 20.0
        state.currency = 2500.0

        assert purchase(state, get_upgrade("worker_replacement_system")).ok

        assert state.worker_count == 2
        assert state.currency == pytest.approx(400.0)
        assert state.automation_level == 4
        assert state.ending_kind is EndingKind.COLLAPSE

    def test_offshore_tax_havens_earns_share_of_remaining_currency(self):
        state = create_default_state()
        state.currency = 2000.0
        state.ethics_score = 40.0

        assert purchase(state, get_upgrade("offshore_tax_havens")).ok

        assert state.currency == pytest.approx(230.0)

    def test_legacy_ids_resolve_case_insensitively(self):
        legacy = legacy_upgrade_id("Hire Worker")
        assert len(legacy) == 36
        assert legacy.count("-") == 4
        assert resolve_legacy_id(legacy.upper()) == "hire_worker"
        assert resolve_legacy_id("hire_worker") == "hire_worker"
        assert resolve_legacy_id("00000000-0000-0000-0000-000000000000") is None


def test_effects_on_catalog_are_declarative():
    bulk = get_upgrade("bulk_material_purchase")
    assert AddField("currency", 20.0) in bulk.effects
