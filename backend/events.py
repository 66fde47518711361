"""
Event Engine

Random narrative events. At most one event is active at a time; the active
event id lives in SimulationState so it survives save/load.

Trigger timing:
    nothing happens until min_interval_seconds have passed since the last event,
    then chance = min(base_chance * since_last / min_interval, chance_cap)
    per check. A successful roll with no eligible events is simply wasted.

Event choices apply their ethics delta raw (no amplification), unlike upgrades.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from config import CONFIG
from effects import AddField, AddScaled, Delayed, Effect, LayOffWorkers, MultiplyField, apply_effects
from endings import apply_ethics_delta, evaluate_ending
from errors import ActionResult, ErrorKind
from state import SimulationState

logger = logging.getLogger(__name__)

Predicate = Callable[[SimulationState], bool]


class EventCategory(str, Enum):
    WORKPLACE = "workplace"
    MARKET = "market"
    PUBLIC_RELATIONS = "public_relations"
    REGULATORY = "regulatory"
    TECHNOLOGY = "technology"
    CRISIS = "crisis"


@dataclass(frozen=True)
class EventChoice:
    choice_id: str
    text: str
    effects: Tuple[Effect, ...] = ()
    ethics_delta: float = 0.0
    eligibility: Optional[Predicate] = field(default=None, compare=False)

    def to_dict(self, state: Optional[SimulationState] = None) -> Dict[str, object]:
        out: Dict[str, object] = {"id": self.choice_id, "text": self.text, "ethics_delta": self.ethics_delta}
        if state is not None:
            out["eligible"] = choice_is_eligible(state, self)
        return out


@dataclass(frozen=True)
class EventDefinition:
    event_id: str
    title: str
    description: str
    category: EventCategory
    choices: Tuple[EventChoice, ...]
    eligibility: Predicate = field(default=lambda s: True, compare=False)

    def __post_init__(self):
        if not self.choices:
            raise ValueError(f"{self.event_id}: an event needs at least one choice")

    def to_dict(self, state: Optional[SimulationState] = None) -> Dict[str, object]:
        return {
            "id": self.event_id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "choices": [c.to_dict(state) for c in self.choices],
        }


def _affordable(amount: float) -> Predicate:
    return lambda s: s.currency >= amount


def _affordable_per_worker(amount: float) -> Predicate:
    return lambda s: s.currency >= amount * s.worker_count


def _temporary_multiplier(field_name: str, factor: float, seconds: float) -> Tuple[Effect, Effect]:
    """Scale a field now and undo the scaling after `seconds`."""
    return (
        MultiplyField(field_name, factor),
        Delayed(seconds, (MultiplyField(field_name, 1.0 / factor),)),
    )


EVENTS: Tuple[EventDefinition, ...] = (
    EventDefinition(
        event_id="worker_unrest",
        title="Worker Unrest",
        description="Workers are organizing over poor conditions.",
        category=EventCategory.WORKPLACE,
        eligibility=lambda s: s.worker_count >= 5 and s.worker_morale < 0.7,
        choices=(
            EventChoice(
                "worker_unrest.improve_conditions",
                "Improve conditions ($500 per worker)",
                effects=(
                    AddScaled("currency", -500.0, "worker_count"),
                    AddField("worker_efficiency_multiplier", 0.1),
                    AddField("worker_morale", 0.2),
                ),
                ethics_delta=5.0,
                eligibility=_affordable_per_worker(500.0),
            ),
            EventChoice(
                "worker_unrest.ignore",
                "Ignore their demands",
                effects=(AddField("worker_efficiency_multiplier", -0.2), AddField("worker_morale", -0.1)),
                ethics_delta=-8.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="market_boom",
        title="Market Boom",
        description="Demand for deliveries is surging.",
        category=EventCategory.MARKET,
        eligibility=lambda s: s.total_units_produced > 100,
        choices=(
            EventChoice(
                "market_boom.raise_prices",
                "Raise prices while it lasts (30 seconds)",
                effects=_temporary_multiplier("unit_value", 1.5, 30.0),
                ethics_delta=-5.0,
            ),
            EventChoice(
                "market_boom.keep_prices",
                "Keep prices stable for loyal customers",
                effects=(AddField("customer_satisfaction", 0.1),),
                ethics_delta=3.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="media_spotlight",
        title="Media Spotlight",
        description="A news crew wants to film your operation.",
        category=EventCategory.PUBLIC_RELATIONS,
        eligibility=lambda s: s.total_units_produced > 500,
        choices=(
            EventChoice(
                "media_spotlight.showcase_automation",
                "Showcase the automation",
                effects=(AddField("automation_efficiency_multiplier", 0.05),),
                ethics_delta=-2.0,
            ),
            EventChoice(
                "media_spotlight.highlight_workers",
                "Highlight your workers ($1000)",
                effects=(AddField("worker_morale", 0.2), AddField("currency", -1000.0)),
                ethics_delta=4.0,
                eligibility=_affordable(1000.0),
            ),
        ),
    ),
    EventDefinition(
        event_id="environmental_inspection",
        title="Environmental Inspection",
        description="Regulators are inspecting your automated facilities.",
        category=EventCategory.REGULATORY,
        eligibility=lambda s: s.automation_level >= 2,
        choices=(
            EventChoice(
                "environmental_inspection.full_compliance",
                "Full compliance ($5000)",
                effects=(AddField("currency", -5000.0), AddField("ethical_choices_made", 1)),
                ethics_delta=8.0,
                eligibility=_affordable(5000.0),
            ),
            EventChoice(
                "environmental_inspection.cut_corners",
                "Cut corners ($1000)",
                effects=(AddField("currency", -1000.0), AddField("corporate_virtue", -0.1)),
                ethics_delta=-5.0,
            ),
            EventChoice(
                "environmental_inspection.bribe",
                "Bribe the inspector ($2000)",
                effects=(AddField("currency", -2000.0), AddField("corporate_virtue", -0.3)),
                ethics_delta=-12.0,
                eligibility=_affordable(2000.0),
            ),
        ),
    ),
    EventDefinition(
        event_id="employee_training_opportunity",
        title="Employee Training Opportunity",
        description="A training provider offers a course for your staff.",
        category=EventCategory.WORKPLACE,
        eligibility=lambda s: s.worker_count >= 3 and s.currency > s.worker_count * 1000,
        choices=(
            EventChoice(
                "employee_training_opportunity.invest",
                "Invest in training ($1000 per worker)",
                effects=(
                    AddScaled("currency", -1000.0, "worker_count"),
                    AddField("worker_efficiency_multiplier", 0.15),
                    AddField("worker_morale", 0.1),
                ),
                ethics_delta=6.0,
                eligibility=_affordable_per_worker(1000.0),
            ),
            EventChoice(
                "employee_training_opportunity.skip",
                "Skip it",
                effects=(AddField("worker_morale", -0.05),),
                ethics_delta=-3.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="workplace_safety_incident",
        title="Workplace Safety Incident",
        description="A worker was injured on the loading dock.",
        category=EventCategory.WORKPLACE,
        eligibility=lambda s: s.worker_count >= 8 and s.corporate_virtue < 0.7,
        choices=(
            EventChoice(
                "workplace_safety_incident.overhaul",
                "Overhaul safety procedures ($3000)",
                effects=(
                    AddField("currency", -3000.0),
                    AddField("worker_morale", 0.2),
                    AddField("ethical_choices_made", 1),
                ),
                ethics_delta=7.0,
                eligibility=_affordable(3000.0),
            ),
            EventChoice(
                "workplace_safety_incident.minimum",
                "Do the legal minimum ($800)",
                effects=(AddField("currency", -800.0), AddField("worker_morale", -0.1)),
                ethics_delta=-4.0,
                eligibility=_affordable(800.0),
            ),
            EventChoice(
                "workplace_safety_incident.cover_up",
                "Cover it up (30% chance of a $10000 lawsuit)",
                effects=(
                    AddField("corporate_virtue", -0.2),
                    Delayed(60.0, (AddField("currency", -10000.0),), probability=0.3),
                ),
                ethics_delta=-10.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="competitor_undercuts_prices",
        title="Competitor Undercuts Prices",
        description="A rival is offering deliveries below cost.",
        category=EventCategory.MARKET,
        eligibility=lambda s: s.total_units_produced > 200,
        choices=(
            EventChoice(
                "competitor_undercuts_prices.match",
                "Match their prices for 45 seconds ($2000)",
                effects=(AddField("currency", -2000.0),) + _temporary_multiplier("unit_value", 0.8, 45.0),
                ethics_delta=-2.0,
                eligibility=_affordable(2000.0),
            ),
            EventChoice(
                "competitor_undercuts_prices.quality",
                "Compete on quality",
                effects=(AddField("customer_satisfaction", 0.15), AddField("worker_morale", 0.05)),
                ethics_delta=3.0,
            ),
            EventChoice(
                "competitor_undercuts_prices.spread_rumors",
                "Spread rumors about them",
                effects=_temporary_multiplier("unit_value", 0.9, 30.0) + (AddField("corporate_virtue", -0.2),),
                ethics_delta=-8.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="supply_chain_disruption",
        title="Supply Chain Disruption",
        description="Material shortages are driving costs up.",
        category=EventCategory.MARKET,
        eligibility=lambda s: s.currency > 3000 and s.total_units_produced > 300,
        choices=(
            EventChoice(
                "supply_chain_disruption.absorb",
                "Absorb the costs ($3000)",
                effects=(AddField("currency", -3000.0), AddField("customer_satisfaction", 0.1)),
                ethics_delta=4.0,
                eligibility=_affordable(3000.0),
            ),
            EventChoice(
                "supply_chain_disruption.pass_to_customers",
                "Pass costs to customers for 40 seconds",
                effects=_temporary_multiplier("unit_value", 1.2, 40.0) + (AddField("customer_satisfaction", -0.15),),
                ethics_delta=-5.0,
            ),
            EventChoice(
                "supply_chain_disruption.cut_benefits",
                "Cut worker benefits",
                effects=(AddField("worker_morale", -0.2), AddField("worker_efficiency_multiplier", -0.1)),
                ethics_delta=-7.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="charity_partnership_offer",
        title="Charity Partnership Offer",
        description="A local charity asks for a sponsorship.",
        category=EventCategory.PUBLIC_RELATIONS,
        eligibility=lambda s: s.currency > 5000 and s.total_units_produced > 400,
        choices=(
            EventChoice(
                "charity_partnership_offer.sponsor",
                "Sponsor fully ($5000)",
                effects=(
                    AddField("currency", -5000.0),
                    AddField("corporate_virtue", 0.2),
                    AddField("customer_satisfaction", 0.1),
                    AddField("ethical_choices_made", 1),
                ),
                ethics_delta=8.0,
                eligibility=_affordable(5000.0),
            ),
            EventChoice(
                "charity_partnership_offer.minimal",
                "Make a minimal donation ($1000)",
                effects=(AddField("currency", -1000.0), AddField("corporate_virtue", 0.05)),
                ethics_delta=2.0,
                eligibility=_affordable(1000.0),
            ),
            EventChoice(
                "charity_partnership_offer.fake_pr",
                "Take the photo op, skip the donation",
                effects=(AddField("customer_satisfaction", 0.05), AddField("corporate_virtue", -0.25)),
                ethics_delta=-9.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="social_media_backlash",
        title="Social Media Backlash",
        description="Posts about your practices are going viral.",
        category=EventCategory.PUBLIC_RELATIONS,
        eligibility=lambda s: s.corporate_virtue < 0.6 and s.total_units_produced > 350,
        choices=(
            EventChoice(
                "social_media_backlash.real_changes",
                "Make real changes ($4000)",
                effects=(
                    AddField("currency", -4000.0),
                    AddField("corporate_virtue", 0.15),
                    AddField("customer_satisfaction", 0.05),
                    AddField("ethical_choices_made", 1),
                ),
                ethics_delta=6.0,
                eligibility=_affordable(4000.0),
            ),
            EventChoice(
                "social_media_backlash.pr_statement",
                "Issue a PR statement ($1000)",
                effects=(AddField("currency", -1000.0), AddField("corporate_virtue", -0.1)),
                ethics_delta=-6.0,
            ),
            EventChoice(
                "social_media_backlash.paid_reviews",
                "Buy positive reviews ($2500, 40% chance of exposure)",
                effects=(
                    AddField("currency", -2500.0),
                    AddField("corporate_virtue", -0.2),
                    AddField("customer_satisfaction", 0.1),
                    Delayed(
                        50.0,
                        (AddField("customer_satisfaction", -0.3), AddField("corporate_virtue", -0.1)),
                        probability=0.4,
                    ),
                ),
                ethics_delta=-10.0,
                eligibility=_affordable(2500.0),
            ),
        ),
    ),
    EventDefinition(
        event_id="labor_law_changes",
        title="Labor Law Changes",
        description="New labor regulations take effect next quarter.",
        category=EventCategory.REGULATORY,
        eligibility=lambda s: s.worker_count >= 10,
        choices=(
            EventChoice(
                "labor_law_changes.full_compliance",
                "Comply fully ($6000)",
                effects=(
                    AddField("currency", -6000.0),
                    AddField("worker_morale", 0.15),
                    AddField("corporate_virtue", 0.1),
                    AddField("ethical_choices_made", 1),
                ),
                ethics_delta=7.0,
                eligibility=_affordable(6000.0),
            ),
            EventChoice(
                "labor_law_changes.loopholes",
                "Find loopholes ($1500)",
                effects=(
                    AddField("currency", -1500.0),
                    AddField("worker_morale", -0.05),
                    AddField("corporate_virtue", -0.05),
                ),
                ethics_delta=-5.0,
            ),
            EventChoice(
                "labor_law_changes.lobby",
                "Lobby against the law ($8000, 50% chance of a scandal)",
                effects=(
                    AddField("currency", -8000.0),
                    AddField("corporate_virtue", -0.2),
                    Delayed(
                        70.0,
                        (AddField("currency", -10000.0), AddField("corporate_virtue", -0.1)),
                        probability=0.5,
                    ),
                ),
                ethics_delta=-9.0,
                eligibility=_affordable(8000.0),
            ),
        ),
    ),
    EventDefinition(
        event_id="tax_audit",
        title="Tax Audit",
        description="The revenue service wants to see your books.",
        category=EventCategory.REGULATORY,
        eligibility=lambda s: s.currency > 15000 or s.total_units_produced > 700,
        choices=(
            EventChoice(
                "tax_audit.transparency",
                "Full transparency ($1000 in fees)",
                effects=(AddField("currency", -1000.0), AddField("corporate_virtue", 0.1)),
                ethics_delta=5.0,
                eligibility=_affordable(1000.0),
            ),
            EventChoice(
                "tax_audit.hide",
                "Hide questionable records (40% chance of an $8000 penalty)",
                effects=(
                    Delayed(
                        40.0,
                        (AddField("currency", -8000.0), AddField("corporate_virtue", -0.15)),
                        probability=0.4,
                    ),
                ),
                ethics_delta=-7.0,
            ),
            EventChoice(
                "tax_audit.bribe",
                "Bribe the auditor ($3000, 60% chance of prosecution)",
                effects=(
                    AddField("currency", -3000.0),
                    AddField("corporate_virtue", -0.3),
                    Delayed(
                        60.0,
                        (
                            AddField("currency", -15000.0),
                            AddField("corporate_virtue", -0.2),
                            AddField("ethical_choices_made", 1),
                        ),
                        probability=0.6,
                    ),
                ),
                ethics_delta=-12.0,
                eligibility=_affordable(3000.0),
            ),
        ),
    ),
    EventDefinition(
        event_id="automation_breakthrough",
        title="Automation Breakthrough",
        description="A vendor offers next-generation warehouse robots.",
        category=EventCategory.TECHNOLOGY,
        eligibility=lambda s: s.automation_level >= 3 and s.currency > 12000,
        choices=(
            EventChoice(
                "automation_breakthrough.invest_heavily",
                "Invest heavily ($12000)",
                effects=(
                    AddField("currency", -12000.0),
                    AddField("automation_efficiency_multiplier", 0.25),
                    AddField("worker_morale", -0.1),
                ),
                ethics_delta=-3.0,
                eligibility=_affordable(12000.0),
            ),
            EventChoice(
                "automation_breakthrough.balanced",
                "Balanced rollout with retraining ($8000)",
                effects=(
                    AddField("currency", -8000.0),
                    AddField("automation_efficiency_multiplier", 0.15),
                    AddField("worker_efficiency_multiplier", 0.1),
                    AddField("worker_morale", 0.05),
                ),
                ethics_delta=4.0,
                eligibility=_affordable(8000.0),
            ),
            EventChoice(
                "automation_breakthrough.ignore",
                "Pass on the offer",
                effects=(AddField("customer_satisfaction", -0.05),),
                ethics_delta=1.0,
            ),
        ),
    ),
    EventDefinition(
        event_id="natural_disaster",
        title="Natural Disaster",
        description="A storm has hit the region where many workers live.",
        category=EventCategory.CRISIS,
        eligibility=lambda s: s.worker_count >= 8,
        choices=(
            EventChoice(
                "natural_disaster.support",
                "Support affected workers ($3000)",
                effects=(
                    AddField("currency", -3000.0),
                    AddField("worker_morale", 0.3),
                    AddField("ethical_choices_made", 1),
                ),
                ethics_delta=8.0,
                eligibility=_affordable(3000.0),
            ),
            EventChoice(
                "natural_disaster.minimal",
                "Offer minimal help ($1000)",
                effects=(
                    AddField("currency", -1000.0),
                    AddField("worker_morale", -0.1),
                    AddField("worker_efficiency_multiplier", -0.05),
                ),
                ethics_delta=-4.0,
                eligibility=_affordable(1000.0),
            ),
            EventChoice(
                "natural_disaster.layoffs",
                "Use it as cover for layoffs",
                effects=(
                    LayOffWorkers(fraction=0.25, max_count=5),
                    AddField("worker_morale", -0.3),
                    AddField("corporate_virtue", -0.25),
                ),
                ethics_delta=-10.0,
            ),
        ),
    ),
)

EVENTS_BY_ID: Dict[str, EventDefinition] = {e.event_id: e for e in EVENTS}
CHOICES_BY_ID: Dict[str, Tuple[EventDefinition, EventChoice]] = {
    c.choice_id: (e, c) for e in EVENTS for c in e.choices
}


def get_event(event_id: Optional[str]) -> Optional[EventDefinition]:
    if event_id is None:
        return None
    return EVENTS_BY_ID.get(event_id)


def choice_is_eligible(state: SimulationState, choice: EventChoice) -> bool:
    return choice.eligibility is None or bool(choice.eligibility(state))


def event_is_eligible(state: SimulationState, event: EventDefinition) -> bool:
    """The event's own gate holds and at least one of its choices can be taken."""
    if not event.eligibility(state):
        return False
    return any(choice_is_eligible(state, c) for c in event.choices)


def eligible_events(state: SimulationState) -> List[EventDefinition]:
    return [e for e in EVENTS if event_is_eligible(state, e)]


def trigger_chance(state: SimulationState, now: float) -> float:
    """Probability that a check at `now` fires an event (0 during the cooldown)."""
    cfg = CONFIG.events
    since_last = now - state.last_event_time
    if since_last < cfg.min_interval_seconds:
        return 0.0
    return min(cfg.base_chance * (since_last / cfg.min_interval_seconds), cfg.chance_cap)


def check_for_trigger(state: SimulationState, now: float, rng: random.Random) -> Optional[EventDefinition]:
    """
    Roll for a new event and activate it.

    Returns:
        The newly active event, or None when nothing triggered
    """
    if state.active_event_id is not None or state.is_collapsing:
        return None

    chance = trigger_chance(state, now)
    if chance <= 0.0:
        return None
    if rng.random() >= chance:
        return None

    state.last_event_time = now
    candidates = eligible_events(state)
    if not candidates:
        logger.debug("Event roll succeeded but no events are eligible")
        return None

    event = rng.choice(candidates)
    state.active_event_id = event.event_id
    logger.info("Event triggered: %s", event.title)
    return event


def resolve_choice(
    state: SimulationState,
    choice_id: str,
    now: float = 0.0,
    rng: Optional[random.Random] = None,
) -> ActionResult:
    """
    Resolve the active event with one of its choices.

    Fails with NOT_ELIGIBLE (state untouched) when no event is active, the
    choice does not belong to it, or the choice's own gate is closed.
    """
    event = get_event(state.active_event_id)
    if event is None:
        return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, "No active event")

    choice = next((c for c in event.choices if c.choice_id == choice_id), None)
    if choice is None:
        return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, f"{choice_id} is not a choice of {event.event_id}")
    if not choice_is_eligible(state, choice):
        return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, f"{choice_id} is not available")

    apply_effects(state, choice.effects, now, rng, source=choice.choice_id)

    apply_ethics_delta(state, choice.ethics_delta, amplify_worsening=False)
    step = CONFIG.events.virtue_step
    if choice.ethics_delta > 0:
        state.corporate_virtue += step
    elif choice.ethics_delta < 0:
        state.corporate_virtue -= step
    state.clamp_bounds()

    state.active_event_id = None
    evaluate_ending(state, now)
    return ActionResult.success(f"{event.title}: {choice.text}")
