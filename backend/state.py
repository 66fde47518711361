"""
Simulation State

The single mutable aggregate that every engine reads and writes. Engines
never keep their own copy of these values; they receive the state, mutate
it, and call clamp_bounds() so the range invariants hold after every step.
"""

import copy
import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from config import CONFIG, DefaultsConfig


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class EndingKind(str, Enum):
    """Terminal outcome. ONGOING means no ending has been reached."""

    ONGOING = "ongoing"
    COLLAPSE = "collapse"
    REFORM = "reform"
    LOOP = "loop"

    @property
    def is_terminal(self) -> bool:
        return self is not EndingKind.ONGOING


@dataclass(slots=True)
class UpgradeInstance:
    """One purchase of a repeatable upgrade, individually trackable."""

    upgrade_id: str
    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    purchased_at: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "upgrade_id": self.upgrade_id,
            "instance_id": self.instance_id,
            "purchased_at": self.purchased_at,
        }


@dataclass(slots=True)
class PendingEffect:
    """Declarative effects scheduled to fire once the clock reaches trigger_at."""

    trigger_at: float
    effects: List[Any]  # effects.Effect variants
    source: str = ""


@dataclass(slots=True)
class SimulationState:
    """
    Full state of one play session.

    Ranges (enforced by clamp_bounds):
        currency >= 0, worker_morale/customer_satisfaction/corporate_virtue in [0, 1],
        ethics_score/public_perception/environmental_impact in [0, 100],
        production_accumulator in [0, 1).
    """

    # Counters
    total_units_produced: int = 0
    currency: float = 0.0
    lifetime_currency_earned: float = 0.0

    # Workforce
    worker_count: int = 0
    worker_efficiency_multiplier: float = 1.0
    worker_morale: float = 0.8
    workers_quit_last_tick: int = 0

    # Production
    base_manual_rate: float = 1.0
    base_worker_rate: float = 0.1
    base_system_rate: float = 0.0
    automation_efficiency_multiplier: float = 1.0
    automation_level: int = 0
    production_accumulator: float = 0.0  # Fractional carry-over, always < 1

    # Commerce
    unit_value: float = 1.0
    customer_satisfaction: float = 0.9

    # Ethics
    ethics_score: float = 100.0  # 100 = full integrity, 0 = collapse
    corporate_virtue: float = 0.5
    public_perception: float = 50.0
    environmental_impact: float = 0.0  # Higher is worse
    lowest_ethics_score: float = 100.0

    # Progress
    ethical_choices_made: int = 0
    purchased_upgrade_ids: List[str] = field(default_factory=list)
    active_repeatable_instances: List[UpgradeInstance] = field(default_factory=list)

    # Terminal flags
    is_collapsing: bool = False
    ending_kind: EndingKind = EndingKind.ONGOING
    loop_started_at: Optional[float] = None

    # Events and scheduled effects
    active_event_id: Optional[str] = None
    last_event_time: float = 0.0
    pending_effects: List[PendingEffect] = field(default_factory=list)

    last_tick_timestamp: float = 0.0

    def clamp_bounds(self) -> None:
        """Restore every range invariant after a mutation."""
        self.currency = max(0.0, self.currency)
        self.worker_count = max(0, int(self.worker_count))
        self.worker_efficiency_multiplier = max(0.0, self.worker_efficiency_multiplier)
        self.worker_morale = clamp(self.worker_morale, 0.0, 1.0)
        self.base_manual_rate = max(0.0, self.base_manual_rate)
        self.base_worker_rate = max(0.0, self.base_worker_rate)
        self.base_system_rate = max(0.0, self.base_system_rate)
        self.automation_efficiency_multiplier = max(0.0, self.automation_efficiency_multiplier)
        self.automation_level = max(0, int(self.automation_level))
        self.unit_value = max(0.0, self.unit_value)
        self.customer_satisfaction = clamp(self.customer_satisfaction, 0.0, 1.0)
        self.ethics_score = clamp(self.ethics_score, 0.0, 100.0)
        self.corporate_virtue = clamp(self.corporate_virtue, 0.0, 1.0)
        self.public_perception = clamp(self.public_perception, 0.0, 100.0)
        self.environmental_impact = clamp(self.environmental_impact, 0.0, 100.0)
        self.ethical_choices_made = max(0, int(self.ethical_choices_made))
        self.lowest_ethics_score = min(self.lowest_ethics_score, self.ethics_score)

    def earn(self, amount: float) -> None:
        """Add revenue; positive amounts also count toward lifetime earnings."""
        self.currency += amount
        if amount > 0:
            self.lifetime_currency_earned += amount
        self.currency = max(0.0, self.currency)

    def times_purchased(self, upgrade_id: str) -> int:
        return sum(1 for purchased in self.purchased_upgrade_ids if purchased == upgrade_id)

    def instances_of(self, upgrade_id: str) -> List[UpgradeInstance]:
        return [inst for inst in self.active_repeatable_instances if inst.upgrade_id == upgrade_id]

    def remove_instance(self, instance_id: str) -> bool:
        """Drop one repeatable purchase by its own identity."""
        for idx, inst in enumerate(self.active_repeatable_instances):
            if inst.instance_id == instance_id:
                del self.active_repeatable_instances[idx]
                return True
        return False

    def copy(self) -> "SimulationState":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, object]:
        """Read-only view of every field (pending effects summarized)."""
        out: Dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "ending_kind":
                value = value.value
            elif f.name == "active_repeatable_instances":
                value = [inst.to_dict() for inst in value]
            elif f.name == "purchased_upgrade_ids":
                value = list(value)
            elif f.name == "pending_effects":
                value = [{"trigger_at": p.trigger_at, "source": p.source} for p in value]
            out[f.name] = value
        return out


def create_default_state(now: float = 0.0, defaults: Optional[DefaultsConfig] = None) -> SimulationState:
    """Fresh simulation with the configured starting values."""
    d = defaults or CONFIG.defaults
    return SimulationState(
        currency=d.currency,
        worker_count=d.worker_count,
        worker_efficiency_multiplier=d.worker_efficiency_multiplier,
        worker_morale=d.worker_morale,
        base_manual_rate=d.base_manual_rate,
        base_worker_rate=d.base_worker_rate,
        base_system_rate=d.base_system_rate,
        automation_efficiency_multiplier=d.automation_efficiency_multiplier,
        unit_value=d.unit_value,
        customer_satisfaction=d.customer_satisfaction,
        ethics_score=d.ethics_score,
        lowest_ethics_score=d.ethics_score,
        corporate_virtue=d.corporate_virtue,
        public_perception=d.public_perception,
        environmental_impact=d.environmental_impact,
        last_event_time=now,
        last_tick_timestamp=now,
    )
