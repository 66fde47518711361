"""
Telemetry

Derived values for achievement/leaderboard collaborators. Pull-based: the
collaborator asks for a report whenever it wants one; nothing here calls out.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List

from accrual import effective_rate
from config import CONFIG
from state import EndingKind, SimulationState


@dataclass
class TelemetryReport:
    total_units_produced: int
    lifetime_currency_earned: float
    ethics_score: float
    ethics_milestones_crossed: List[float] = field(default_factory=list)
    ending: str = EndingKind.ONGOING.value
    achievements: Dict[str, float] = field(default_factory=dict)  # Percent complete, 0-100

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _percent(value: float, target: float) -> float:
    if target <= 0:
        return 100.0
    return max(0.0, min(100.0, value / target * 100.0))


def ethics_milestones_crossed(state: SimulationState) -> List[float]:
    """Thresholds the ethics score has ever fallen to or below."""
    lowest = min(state.lowest_ethics_score, state.ethics_score)
    return [m for m in CONFIG.telemetry.ethics_milestones if lowest <= m]


def achievement_progress(state: SimulationState) -> Dict[str, float]:
    cfg = CONFIG.telemetry
    return {
        "first_worker_hired": 100.0 if state.worker_count >= 1 else 0.0,
        "automation_milestone": _percent(effective_rate(state), cfg.automation_milestone_rate),
        "ethical_choices": _percent(state.ethical_choices_made, cfg.ethical_choices_target),
        "economic_collapse": 100.0 if state.is_collapsing else 0.0,
        "reform_ending": 100.0 if state.ending_kind is EndingKind.REFORM else 0.0,
    }


def collect(state: SimulationState) -> TelemetryReport:
    return TelemetryReport(
        total_units_produced=state.total_units_produced,
        lifetime_currency_earned=state.lifetime_currency_earned,
        ethics_score=state.ethics_score,
        ethics_milestones_crossed=ethics_milestones_crossed(state),
        ending=state.ending_kind.value,
        achievements=achievement_progress(state),
    )
