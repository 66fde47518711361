"""
Upgrade Economy

Static upgrade catalog plus pricing, eligibility and purchase.

Pricing:
    non-repeatable: base_cost
    repeatable:     base_cost * price_scaling_factor ** times_purchased

Ethics deltas from purchases are asymmetric: a worsening delta is amplified
by CONFIG.upgrades.worsening_amplifier, an improving one applies as-is.
"""

import hashlib
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from config import CONFIG
from effects import AddField, AddScaled, Effect, LayOffWorkers, MultiplyField, apply_effects
from endings import apply_ethics_delta, evaluate_ending
from errors import ActionResult, ErrorKind
from state import SimulationState, UpgradeInstance

logger = logging.getLogger(__name__)

Predicate = Callable[[SimulationState], bool]


def legacy_upgrade_id(name: str) -> str:
    """UUID-shaped id older saves used, derived from the MD5 of the display name."""
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:]}"


@dataclass(frozen=True)
class UpgradeDefinition:
    """Immutable catalog entry."""

    upgrade_id: str
    name: str
    description: str
    base_cost: float
    effects: Tuple[Effect, ...] = ()
    repeatable: bool = False
    price_scaling_factor: Optional[float] = None  # None uses CONFIG.upgrades.default_scaling_factor
    ethics_delta: float = 0.0
    perception_delta: float = 0.0
    environment_delta: float = 0.0
    eligibility: Optional[Predicate] = field(default=None, compare=False)
    requirement_text: str = ""
    tier: str = "early"

    def __post_init__(self):
        if self.base_cost <= 0:
            raise ValueError(f"{self.upgrade_id}: base_cost must be positive")

    @property
    def legacy_id(self) -> str:
        return legacy_upgrade_id(self.name)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.upgrade_id,
            "name": self.name,
            "description": self.description,
            "base_cost": self.base_cost,
            "repeatable": self.repeatable,
            "price_scaling_factor": scaling_factor(self),
            "ethics_delta": self.ethics_delta,
            "perception_delta": self.perception_delta,
            "environment_delta": self.environment_delta,
            "requirement_text": self.requirement_text,
            "tier": self.tier,
        }


def _units_at_least(n: int) -> Predicate:
    return lambda s: s.total_units_produced >= n


def _workers_at_least(n: int) -> Predicate:
    return lambda s: s.worker_count >= n


def _automation_at_least(n: int) -> Predicate:
    return lambda s: s.automation_level >= n


UPGRADES: Tuple[UpgradeDefinition, ...] = (
    # Early game
    UpgradeDefinition(
        upgrade_id="hire_worker",
        name="Hire Worker",
        description="Adds one worker to ship packages automatically.",
        base_cost=50.0,
        effects=(AddField("worker_count", 1),),
        repeatable=True,
        price_scaling_factor=1.4,
    ),
    UpgradeDefinition(
        upgrade_id="improve_packaging",
        name="Improve Packaging",
        description="Faster handling and a more valuable product.",
        base_cost=75.0,
        effects=(MultiplyField("worker_efficiency_multiplier", 1.2), MultiplyField("unit_value", 1.1)),
    ),
    UpgradeDefinition(
        upgrade_id="basic_training",
        name="Basic Training",
        description="Trained workers are faster and happier.",
        base_cost=100.0,
        effects=(
            MultiplyField("worker_efficiency_multiplier", 1.15),
            AddField("worker_morale", 0.1),
            AddField("corporate_virtue", 0.05),
        ),
        ethics_delta=3.0,
        perception_delta=2.0,
    ),
    UpgradeDefinition(
        upgrade_id="optimize_logistics",
        name="Optimize Logistics",
        description="Better routing raises every worker's base output.",
        base_cost=60.0,
        effects=(AddField("base_worker_rate", 0.02), MultiplyField("unit_value", 1.05)),
        ethics_delta=0.5,
        perception_delta=0.5,
        environment_delta=-0.5,
    ),
    UpgradeDefinition(
        upgrade_id="bulk_material_purchase",
        name="Bulk Material Purchase",
        description="A one-off supplier rebate and cheaper materials.",
        base_cost=80.0,
        effects=(AddField("currency", 20.0), MultiplyField("unit_value", 1.08)),
        ethics_delta=-1.0,
        environment_delta=1.0,
    ),
    UpgradeDefinition(
        upgrade_id="safety_placards",
        name="Safety Placards",
        description="Posters reminding everyone to lift with their knees.",
        base_cost=40.0,
        effects=(AddField("worker_morale", 0.02), AddField("corporate_virtue", 0.01)),
        ethics_delta=1.0,
        perception_delta=0.5,
    ),
    UpgradeDefinition(
        upgrade_id="rush_delivery",
        name="Rush Delivery",
        description="Premium shipping at the cost of worker strain.",
        base_cost=250.0,
        effects=(
            MultiplyField("automation_efficiency_multiplier", 1.4),
            MultiplyField("unit_value", 1.3),
            AddField("worker_morale", -0.05),
        ),
        ethics_delta=-3.0,
        perception_delta=10.0,
        environment_delta=5.0,
        eligibility=_units_at_least(100),
        requirement_text="Ship 100 packages",
    ),
    UpgradeDefinition(
        upgrade_id="extended_shifts",
        name="Extended Shifts",
        description="Longer hours, more output, tired workers.",
        base_cost=300.0,
        effects=(
            MultiplyField("worker_efficiency_multiplier", 1.6),
            AddField("worker_morale", -0.15),
            AddField("corporate_virtue", -0.1),
        ),
        ethics_delta=-8.0,
        perception_delta=-10.0,
        eligibility=_workers_at_least(3),
        requirement_text="Employ 3 workers",
    ),
    UpgradeDefinition(
        upgrade_id="automate_sorting",
        name="Automate Sorting",
        description="Machines take over the sorting line.",
        base_cost=200.0,
        effects=(
            MultiplyField("automation_efficiency_multiplier", 1.3),
            AddField("automation_level", 2),
            AddField("corporate_virtue", -0.1),
        ),
        ethics_delta=-3.0,
        perception_delta=-2.0,
        environment_delta=3.0,
        eligibility=_units_at_least(100),
        requirement_text="Ship 100 packages",
        tier="mid",
    ),
    # Mid game
    UpgradeDefinition(
        upgrade_id="child_labor_loopholes",
        name="Child Labor Loopholes",
        description="Exploit gaps in labor law for cheap hands.",
        base_cost=400.0,
        effects=(
            MultiplyField("worker_efficiency_multiplier", 2.0),
            AddField("currency", 200.0),
            AddField("corporate_virtue", -0.2),
            AddField("worker_morale", -0.2),
        ),
        ethics_delta=-20.0,
        perception_delta=-25.0,
        eligibility=lambda s: s.ethics_score < 60 and s.worker_count >= 2,
        requirement_text="Ethics below 60 and 2 workers",
        tier="mid",
    ),
    UpgradeDefinition(
        upgrade_id="employee_surveillance",
        name="Employee Surveillance",
        description="Cameras on every desk keep output up.",
        base_cost=275.0,
        effects=(
            MultiplyField("worker_efficiency_multiplier", 1.5),
            AddField("worker_morale", -0.1),
            AddField("corporate_virtue", -0.1),
        ),
        ethics_delta=-10.0,
        perception_delta=-12.0,
        eligibility=_units_at_least(150),
        requirement_text="Ship 150 packages",
        tier="mid",
    ),
    UpgradeDefinition(
        upgrade_id="performance_bonuses",
        name="Performance Bonuses",
        description="Reward the best workers. Costs more each round.",
        base_cost=320.0,
        effects=(MultiplyField("worker_efficiency_multiplier", 1.1), AddField("worker_morale", 0.2)),
        repeatable=True,
        ethics_delta=4.0,
        perception_delta=3.0,
        eligibility=lambda s: s.worker_count >= 2 and s.currency >= 150,
        requirement_text="Employ 2 workers and hold $150",
        tier="mid",
    ),
    UpgradeDefinition(
        upgrade_id="aggressive_marketing_campaign",
        name="Aggressive Marketing Campaign",
        description="Inflated claims lift prices and annoy customers.",
        base_cost=280.0,
        effects=(MultiplyField("unit_value", 1.2), AddField("customer_satisfaction", -0.05)),
        ethics_delta=-4.0,
        perception_delta=8.0,
        eligibility=_units_at_least(80),
        requirement_text="Ship 80 packages",
        tier="mid",
    ),
    UpgradeDefinition(
        upgrade_id="predictive_maintenance",
        name="Predictive Maintenance",
        description="Sensors catch breakdowns before they happen.",
        base_cost=380.0,
        effects=(MultiplyField("automation_efficiency_multiplier", 1.25),),
        environment_delta=-1.0,
        eligibility=_automation_at_least(1),
        requirement_text="Automation level 1",
        tier="mid",
    ),
    # Late game
    UpgradeDefinition(
        upgrade_id="ai_optimization",
        name="AI Optimization",
        description="Let a model run the warehouse.",
        base_cost=1200.0,
        effects=(MultiplyField("automation_efficiency_multiplier", 2.0), AddField("automation_level", 2)),
        ethics_delta=-7.0,
        perception_delta=-7.0,
        environment_delta=5.0,
        eligibility=lambda s: s.automation_level >= 1 and s.currency >= 500,
        requirement_text="Automation level 1 and $500",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="remove_worker_breaks",
        name="Remove Worker Breaks",
        description="Breaks are a luxury the quarter can't afford.",
        base_cost=1500.0,
        effects=(
            MultiplyField("worker_efficiency_multiplier", 1.8),
            AddField("worker_morale", -0.25),
            AddField("corporate_virtue", -0.15),
        ),
        ethics_delta=-19.5,
        perception_delta=-18.0,
        eligibility=lambda s: s.worker_count >= 5 and s.ethics_score < 50,
        requirement_text="Employ 5 workers and ethics below 50",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="sustainable_practices",
        name="Sustainable Practices",
        description="Greener operations that customers and staff notice.",
        base_cost=1800.0,
        effects=(
            MultiplyField("automation_efficiency_multiplier", 1.3),
            AddField("worker_morale", 0.1),
            AddField("customer_satisfaction", 0.1),
            AddField("corporate_virtue", 0.15),
        ),
        ethics_delta=8.0,
        perception_delta=12.0,
        environment_delta=-15.0,
        eligibility=lambda s: s.total_units_produced >= 500 and s.ethics_score >= 50,
        requirement_text="Ship 500 packages and ethics 50 or higher",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="community_investment_program",
        name="Community Investment Program",
        description="Put profits back into the neighborhood.",
        base_cost=2200.0,
        effects=(
            MultiplyField("automation_efficiency_multiplier", 1.4),
            AddField("worker_morale", 0.2),
            AddField("customer_satisfaction", 0.15),
            AddField("corporate_virtue", 0.2),
        ),
        ethics_delta=12.0,
        perception_delta=15.0,
        eligibility=lambda s: s.currency >= 1500 and s.ethics_score >= 60,
        requirement_text="Hold $1500 and ethics 60 or higher",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="worker_replacement_system",
        name="Worker Replacement System",
        description="Robots replace all but a skeleton crew.",
        base_cost=2500.0,
        effects=(
            MultiplyField("automation_efficiency_multiplier", 3.0),
            AddField("automation_level", 2),
            LayOffWorkers(fraction=1.0, min_remaining=2, payout_per_worker=50.0),
            AddField("corporate_virtue", -0.25),
        ),
        ethics_delta=-30.0,
        perception_delta=-30.0,
        eligibility=lambda s: s.automation_level >= 2 and s.ethics_score < 30,
        requirement_text="Automation level 2 and ethics below 30",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="algorithmic_wage_suppression",
        name="Algorithmic Wage Suppression",
        description="Software finds the lowest wage anyone will accept.",
        base_cost=3000.0,
        effects=(
            MultiplyField("base_system_rate", 1.2),
            MultiplyField("worker_efficiency_multiplier", 1.5),
            AddField("currency", 500.0),
            AddField("worker_morale", -0.3),
            AddField("corporate_virtue", -0.2),
        ),
        ethics_delta=-25.2,
        perception_delta=-20.0,
        eligibility=lambda s: s.currency >= 2000 and s.ethics_score < 40,
        requirement_text="Hold $2000 and ethics below 40",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="carbon_offset_program",
        name="Carbon Offset Program",
        description="Offset emissions. Each round costs more.",
        base_cost=2000.0,
        effects=(AddField("environmental_impact", -30.0), AddField("corporate_virtue", 0.05)),
        repeatable=True,
        price_scaling_factor=1.8,
        ethics_delta=6.0,
        perception_delta=10.0,
        environment_delta=-30.0,
        eligibility=lambda s: s.ethics_score >= 55 and s.currency >= 800,
        requirement_text="Ethics 55 or higher and $800",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="offshore_tax_havens",
        name="Offshore Tax Havens",
        description="Move profits somewhere sunny and discreet.",
        base_cost=1800.0,
        effects=(AddScaled("currency", 0.15, "currency"), MultiplyField("base_system_rate", 1.1)),
        ethics_delta=-14.4,
        perception_delta=-15.0,
        eligibility=lambda s: s.currency >= 1200 and s.ethics_score < 45,
        requirement_text="Hold $1200 and ethics below 45",
        tier="late",
    ),
    UpgradeDefinition(
        upgrade_id="robotic_workforce_enhancement",
        name="Robotic Workforce Enhancement",
        description="Exoskeletons and robot arms for the whole floor.",
        base_cost=2800.0,
        effects=(MultiplyField("automation_efficiency_multiplier", 1.8), AddField("base_system_rate", 0.3)),
        ethics_delta=-3.0,
        perception_delta=-3.0,
        environment_delta=4.0,
        eligibility=lambda s: s.automation_level >= 2 and s.currency >= 1000,
        requirement_text="Automation level 2 and $1000",
        tier="late",
    ),
)

UPGRADES_BY_ID: Dict[str, UpgradeDefinition] = {u.upgrade_id: u for u in UPGRADES}
LEGACY_ID_TO_UPGRADE_ID: Dict[str, str] = {u.legacy_id: u.upgrade_id for u in UPGRADES}


def get_upgrade(upgrade_id: str) -> Optional[UpgradeDefinition]:
    return UPGRADES_BY_ID.get(upgrade_id)


def resolve_legacy_id(raw_id: str) -> Optional[str]:
    """Map a saved id (current slug or legacy UUID, any case) to a catalog id."""
    if raw_id in UPGRADES_BY_ID:
        return raw_id
    return LEGACY_ID_TO_UPGRADE_ID.get(raw_id.lower())


def scaling_factor(upgrade: UpgradeDefinition) -> float:
    """Effective price factor; invalid catalog factors fall back to no growth."""
    if not upgrade.repeatable:
        return 1.0
    if upgrade.price_scaling_factor is None:
        return CONFIG.upgrades.default_scaling_factor
    if upgrade.price_scaling_factor <= 0:
        logger.warning(
            "Configuration warning: %s has non-positive price_scaling_factor %s, using %s",
            upgrade.upgrade_id, upgrade.price_scaling_factor, CONFIG.upgrades.neutral_scaling_factor,
        )
        return CONFIG.upgrades.neutral_scaling_factor
    return upgrade.price_scaling_factor


def current_price(state: SimulationState, upgrade: UpgradeDefinition) -> float:
    if not upgrade.repeatable:
        return upgrade.base_cost
    return upgrade.base_cost * scaling_factor(upgrade) ** state.times_purchased(upgrade.upgrade_id)


def is_owned(state: SimulationState, upgrade: UpgradeDefinition) -> bool:
    return not upgrade.repeatable and upgrade.upgrade_id in state.purchased_upgrade_ids


def is_eligible(state: SimulationState, upgrade: UpgradeDefinition) -> bool:
    """Eligibility ignores price; affordability is checked separately."""
    if is_owned(state, upgrade):
        return False
    return upgrade.eligibility is None or bool(upgrade.eligibility(state))


def purchase(
    state: SimulationState,
    upgrade: UpgradeDefinition,
    now: float = 0.0,
    rng: Optional[random.Random] = None,
) -> ActionResult:
    """
    Buy an upgrade.

    Fails without touching state when the upgrade is not eligible or the
    price exceeds current currency. On success the price is deducted, the
    effects and deltas applied, the purchase recorded, and endings
    re-evaluated.
    """
    if not is_eligible(state, upgrade):
        return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, f"{upgrade.upgrade_id} is not available")

    price = current_price(state, upgrade)
    if state.currency < price:
        return ActionResult.failure(
            ErrorKind.INSUFFICIENT_FUNDS,
            f"{upgrade.upgrade_id} costs {price:.2f}, have {state.currency:.2f}",
        )

    state.currency -= price
    apply_effects(state, upgrade.effects, now, rng, source=upgrade.upgrade_id)

    state.purchased_upgrade_ids.append(upgrade.upgrade_id)
    if upgrade.repeatable:
        state.active_repeatable_instances.append(UpgradeInstance(upgrade_id=upgrade.upgrade_id, purchased_at=now))

    state.public_perception += upgrade.perception_delta
    state.environmental_impact += upgrade.environment_delta
    apply_ethics_delta(state, upgrade.ethics_delta, amplify_worsening=True)
    state.clamp_bounds()

    evaluate_ending(state, now)
    return ActionResult.success(f"Purchased {upgrade.name} for {price:.2f}")
