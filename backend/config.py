"""
Simulation Configuration

Centralizes all tunable parameters for the shipping-company simulation.
This replaces scattered "magic numbers" throughout the codebase.
"""

from dataclasses import dataclass, field


@dataclass
class AccrualConfig:
    """Production and accrual constants."""

    # Valuation: each unit sells for unit_value * (floor + (1 - floor) * satisfaction)
    satisfaction_value_floor: float = 0.5

    # Morale decay under low corporate virtue
    low_virtue_threshold: float = 0.3
    morale_decay_floor: float = 0.2  # Decay stops once morale reaches this
    morale_decay_rate: float = 0.01  # Per second, per unit of (threshold - virtue)

    # Worker quitting (only rolled when the host supplies a random source)
    quit_morale_threshold: float = 0.1
    quit_base_chance: float = 0.01  # 1% per second at zero morale
    quit_max_fraction: float = 0.1  # Up to 10% of the workforce leaves at once
    quit_min_workers: int = 1  # Never quit below this headcount


@dataclass
class UpgradeConfig:
    """Upgrade economy parameters."""

    worsening_amplifier: float = 1.5  # Unethical upgrade deltas hit 1.5x harder
    default_scaling_factor: float = 1.6
    neutral_scaling_factor: float = 1.0  # Used when a catalog factor is invalid


@dataclass
class EventConfig:
    """Random event timing and probability."""

    min_interval_seconds: float = 120.0  # Cooldown between events
    base_chance: float = 0.02  # 2% per check right after the cooldown
    chance_cap: float = 0.1  # Chance grows with waiting time, capped at 10%
    virtue_step: float = 0.05  # Corporate virtue nudge per choice


@dataclass
class EndingConfig:
    """Terminal-state thresholds."""

    collapse_ethics_threshold: float = 0.0

    # Reform
    reform_min_ethical_choices: int = 5
    reform_min_ethics: float = 50.0
    reform_min_currency: float = 1000.0

    # Loop
    loop_min_ethics: float = 70.0
    loop_max_ethics: float = 90.0
    loop_min_currency: float = 2000.0
    loop_min_units: int = 1000

    # Loop instability
    loop_grace_seconds: float = 60.0
    loop_decay_per_second: float = 0.1
    loop_collapse_below: float = 15.0


@dataclass
class PersistenceConfig:
    """Snapshot schema and load-time safety caps."""

    current_schema_version: int = 5
    producer_version: str = "1.0.0"
    max_purchased_ids: int = 500
    max_workers: int = 150


@dataclass
class DefaultsConfig:
    """Initial values for a fresh simulation."""

    currency: float = 0.0
    worker_count: int = 0
    worker_efficiency_multiplier: float = 1.0
    worker_morale: float = 0.8
    base_manual_rate: float = 1.0  # Units per manual shipment
    base_worker_rate: float = 0.1  # Units/sec per worker
    base_system_rate: float = 0.0  # Units/sec from automation
    automation_efficiency_multiplier: float = 1.0
    unit_value: float = 1.0
    customer_satisfaction: float = 0.9
    ethics_score: float = 100.0
    corporate_virtue: float = 0.5
    public_perception: float = 50.0
    environmental_impact: float = 0.0


@dataclass
class TelemetryConfig:
    """Achievement targets reported to external collaborators."""

    automation_milestone_rate: float = 10.0  # Units/sec for 100% progress
    ethical_choices_target: int = 5
    ethics_milestones: tuple = (75.0, 50.0, 25.0, 0.0)


@dataclass
class SimulationConfig:
    """Master configuration for the entire simulation."""

    # Sub-configurations
    accrual: AccrualConfig = field(default_factory=AccrualConfig)
    upgrades: UpgradeConfig = field(default_factory=UpgradeConfig)
    events: EventConfig = field(default_factory=EventConfig)
    endings: EndingConfig = field(default_factory=EndingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    def __post_init__(self):
        """Validate ranges across sections."""
        if self.events.min_interval_seconds <= 0:
            raise ValueError("min_interval_seconds must be positive")
        if not (0.0 <= self.events.base_chance <= 1.0):
            raise ValueError("base_chance must be in [0, 1]")
        if not (0.0 <= self.events.chance_cap <= 1.0):
            raise ValueError("chance_cap must be in [0, 1]")

        if self.upgrades.worsening_amplifier < 1.0:
            raise ValueError("worsening_amplifier must be at least 1.0")

        if self.endings.loop_min_ethics > self.endings.loop_max_ethics:
            raise ValueError("loop_min_ethics cannot exceed loop_max_ethics")

        # Defaults must satisfy the state invariants
        if not (0.0 <= self.defaults.worker_morale <= 1.0):
            raise ValueError("default worker_morale must be in [0, 1]")
        if not (0.0 <= self.defaults.customer_satisfaction <= 1.0):
            raise ValueError("default customer_satisfaction must be in [0, 1]")
        if not (0.0 <= self.defaults.ethics_score <= 100.0):
            raise ValueError("default ethics_score must be in [0, 100]")

        if self.persistence.current_schema_version < 1:
            raise ValueError("current_schema_version must be positive")


# Global configuration instance
CONFIG = SimulationConfig()
