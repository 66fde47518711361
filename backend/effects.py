"""
Declarative Effects

Upgrades, event choices and scheduled consequences all describe their impact
as data. apply_effects() is the single interpreter that turns that data into
state mutations, so catalogs stay inspectable and serializable.
"""

import logging
import random
from dataclasses import dataclass, fields
from typing import Dict, Iterable, Optional, Tuple, Union

from state import PendingEffect, SimulationState

logger = logging.getLogger(__name__)

# Numeric state fields an effect may touch
MUTABLE_FIELDS = frozenset({
    "currency",
    "worker_count",
    "worker_efficiency_multiplier",
    "worker_morale",
    "base_manual_rate",
    "base_worker_rate",
    "base_system_rate",
    "automation_efficiency_multiplier",
    "automation_level",
    "unit_value",
    "customer_satisfaction",
    "ethics_score",
    "corporate_virtue",
    "public_perception",
    "environmental_impact",
    "ethical_choices_made",
})

INTEGER_FIELDS = frozenset({"worker_count", "automation_level", "ethical_choices_made"})


def _check_field(name: str) -> None:
    if name not in MUTABLE_FIELDS:
        raise ValueError(f"Unknown effect field: {name}")


@dataclass(frozen=True)
class AddField:
    """Add a constant to a numeric field."""

    field: str
    amount: float

    def __post_init__(self):
        _check_field(self.field)


@dataclass(frozen=True)
class MultiplyField:
    """Scale a numeric field by a factor."""

    field: str
    factor: float

    def __post_init__(self):
        _check_field(self.field)
        if self.factor < 0:
            raise ValueError("factor cannot be negative")


@dataclass(frozen=True)
class AddScaled:
    """Add amount * state.<per_field>, e.g. a per-worker cost."""

    field: str
    amount: float
    per_field: str

    def __post_init__(self):
        _check_field(self.field)
        _check_field(self.per_field)


@dataclass(frozen=True)
class LayOffWorkers:
    """Remove part of the workforce, optionally paying out per worker removed."""

    fraction: float
    max_count: Optional[int] = None
    min_remaining: int = 0
    payout_per_worker: float = 0.0

    def __post_init__(self):
        if not (0.0 <= self.fraction <= 1.0):
            raise ValueError("fraction must be in [0, 1]")
        if self.min_remaining < 0:
            raise ValueError("min_remaining cannot be negative")


@dataclass(frozen=True)
class Delayed:
    """Schedule effects to fire later, with an optional chance of never happening."""

    delay_seconds: float
    effects: Tuple["Effect", ...]
    probability: float = 1.0

    def __post_init__(self):
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds cannot be negative")
        if not (0.0 <= self.probability <= 1.0):
            raise ValueError("probability must be in [0, 1]")


Effect = Union[AddField, MultiplyField, AddScaled, LayOffWorkers, Delayed]

_KINDS = {
    "add": AddField,
    "multiply": MultiplyField,
    "add_scaled": AddScaled,
    "lay_off": LayOffWorkers,
    "delayed": Delayed,
}
_KIND_BY_TYPE = {cls: kind for kind, cls in _KINDS.items()}


def _set_field(state: SimulationState, name: str, value: float) -> None:
    if name == "currency":
        state.earn(value - state.currency)
        return
    if name in INTEGER_FIELDS:
        value = int(round(value))
    setattr(state, name, value)


def laid_off_count(state: SimulationState, effect: LayOffWorkers) -> int:
    """Number of workers the effect would remove from the current workforce."""
    count = int(state.worker_count * effect.fraction)
    if effect.max_count is not None:
        count = min(count, effect.max_count)
    return max(0, min(count, state.worker_count - effect.min_remaining))


def _apply_one(
    state: SimulationState,
    effect: Effect,
    now: float,
    rng: Optional[random.Random],
    source: str,
) -> None:
    if isinstance(effect, AddField):
        _set_field(state, effect.field, getattr(state, effect.field) + effect.amount)
    elif isinstance(effect, MultiplyField):
        _set_field(state, effect.field, getattr(state, effect.field) * effect.factor)
    elif isinstance(effect, AddScaled):
        delta = effect.amount * getattr(state, effect.per_field)
        _set_field(state, effect.field, getattr(state, effect.field) + delta)
    elif isinstance(effect, LayOffWorkers):
        removed = laid_off_count(state, effect)
        state.worker_count -= removed
        if removed and effect.payout_per_worker:
            state.earn(removed * effect.payout_per_worker)
    elif isinstance(effect, Delayed):
        if effect.probability < 1.0:
            if rng is None:
                logger.debug("Dropping probabilistic delayed effect from %s: no random source", source)
                return
            if rng.random() >= effect.probability:
                return
        state.pending_effects.append(
            PendingEffect(trigger_at=now + effect.delay_seconds, effects=list(effect.effects), source=source)
        )
    else:
        raise TypeError(f"Unsupported effect: {effect!r}")


def apply_effects(
    state: SimulationState,
    effects: Iterable[Effect],
    now: float = 0.0,
    rng: Optional[random.Random] = None,
    source: str = "",
) -> None:
    """
    Interpret effects against state in order, then clamp bounded fields.

    Args:
        state: State to mutate in place
        effects: Effect variants to apply
        now: Current simulation time, used to schedule Delayed effects
        rng: Random source for probabilistic Delayed effects
        source: Label recorded on scheduled effects
    """
    for effect in effects:
        _apply_one(state, effect, now, rng, source)
    state.clamp_bounds()


def drain_pending(state: SimulationState, now: float, rng: Optional[random.Random] = None) -> int:
    """Fire every scheduled effect whose trigger time has passed. Returns how many fired."""
    due = [p for p in state.pending_effects if p.trigger_at <= now]
    if not due:
        return 0
    state.pending_effects = [p for p in state.pending_effects if p.trigger_at > now]
    for pending in sorted(due, key=lambda p: p.trigger_at):
        apply_effects(state, pending.effects, now, rng, source=pending.source)
    return len(due)


def effect_to_dict(effect: Effect) -> Dict[str, object]:
    kind = _KIND_BY_TYPE[type(effect)]
    out: Dict[str, object] = {"kind": kind}
    for f in fields(effect):
        value = getattr(effect, f.name)
        if f.name == "effects":
            value = [effect_to_dict(e) for e in value]
        out[f.name] = value
    return out


def effect_from_dict(data: Dict[str, object]) -> Effect:
    data = dict(data)
    kind = data.pop("kind", None)
    if kind not in _KINDS:
        raise ValueError(f"Unknown effect kind: {kind!r}")
    if kind == "delayed":
        data["effects"] = tuple(effect_from_dict(e) for e in data.get("effects", []))
    return _KINDS[kind](**data)
