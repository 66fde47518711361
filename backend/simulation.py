"""
Simulation Facade

Owns one SimulationState and the random source, and exposes the drive,
query, persistence and telemetry operations a host needs. Every mutation
runs under a single lock so ticks, purchases, event choices and loads never
interleave.
"""

import logging
import random
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import accrual
import endings
import events
import persistence
import telemetry
import upgrades
from errors import ActionResult, CorruptSnapshotError, ErrorKind
from snapshot_store import SnapshotStore
from state import SimulationState, create_default_state

logger = logging.getLogger(__name__)


class Simulation:
    """
    Coordinator for one play session.

    The engines are plain functions over SimulationState; this class
    supplies the shared state, the seeded random source and the
    single-writer boundary.
    """

    def __init__(
        self,
        state: Optional[SimulationState] = None,
        seed: Optional[int] = None,
        store: Optional[SnapshotStore] = None,
        now: float = 0.0,
    ):
        """
        Args:
            state: Existing state to drive; a default state is created if omitted
            seed: Seed for the random source (events, quitting, delayed risks)
            store: Optional snapshot storage used by save()/load_saved()
            now: Start time for a freshly created state
        """
        self.state = state if state is not None else create_default_state(now)
        self.rng = random.Random(seed)
        self.store = store
        self._lock = threading.RLock()

    def _now(self, now: Optional[float]) -> float:
        return self.state.last_tick_timestamp if now is None else now

    # ------------------------------------------------------------------
    # Drive
    # ------------------------------------------------------------------

    def advance_tick(self, now: float) -> int:
        """Accrue up to `now`. Returns whole units produced by this tick."""
        with self._lock:
            before = self.state.total_units_produced
            accrual.advance(self.state, now, self.rng)
            return self.state.total_units_produced - before

    def check_for_event(self, now: float) -> Optional[events.EventDefinition]:
        with self._lock:
            return events.check_for_trigger(self.state, now, self.rng)

    def ship_package(self) -> int:
        with self._lock:
            return accrual.ship_package(self.state)

    def purchase_upgrade(self, upgrade_id: str, now: Optional[float] = None) -> ActionResult:
        upgrade = upgrades.get_upgrade(upgrade_id)
        if upgrade is None:
            return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, f"Unknown upgrade {upgrade_id}")
        with self._lock:
            return upgrades.purchase(self.state, upgrade, self._now(now), self.rng)

    def resolve_event_choice(self, choice_id: str, now: Optional[float] = None) -> ActionResult:
        if choice_id not in events.CHOICES_BY_ID:
            return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, f"Unknown choice {choice_id}")
        with self._lock:
            return events.resolve_choice(self.state, choice_id, self._now(now), self.rng)

    def reset_simulation(self, now: Optional[float] = None) -> None:
        """Discard all progress, including any ending, and start over."""
        with self._lock:
            self.state = create_default_state(self._now(now))
        logger.info("Simulation reset")

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Read-only dict view of every state field."""
        with self._lock:
            return self.state.to_dict()

    def view(self) -> SimulationState:
        """Detached copy of the state; mutating it does not affect the simulation."""
        with self._lock:
            return self.state.copy()

    def current_price(self, upgrade_id: str) -> Optional[float]:
        upgrade = upgrades.get_upgrade(upgrade_id)
        if upgrade is None:
            return None
        with self._lock:
            return upgrades.current_price(self.state, upgrade)

    def is_eligible(self, target_id: str) -> bool:
        """Eligibility of an upgrade, event or event choice by id."""
        with self._lock:
            upgrade = upgrades.get_upgrade(target_id)
            if upgrade is not None:
                return upgrades.is_eligible(self.state, upgrade)
            event = events.get_event(target_id)
            if event is not None:
                return events.event_is_eligible(self.state, event)
            if target_id in events.CHOICES_BY_ID:
                _, choice = events.CHOICES_BY_ID[target_id]
                return events.choice_is_eligible(self.state, choice)
        return False

    def active_event(self) -> Optional[events.EventDefinition]:
        with self._lock:
            return events.get_event(self.state.active_event_id)

    def upgrade_catalog(self) -> List[Dict[str, Any]]:
        """Every upgrade with its current price, eligibility and affordability."""
        with self._lock:
            rows = []
            for upgrade in upgrades.UPGRADES:
                row = upgrade.to_dict()
                price = upgrades.current_price(self.state, upgrade)
                row["current_price"] = price
                row["times_purchased"] = self.state.times_purchased(upgrade.upgrade_id)
                row["eligible"] = upgrades.is_eligible(self.state, upgrade)
                row["affordable"] = self.state.currency >= price
                rows.append(row)
            return rows

    def get_metrics(self) -> Dict[str, float]:
        with self._lock:
            s = self.state
            return {
                "effective_rate": accrual.effective_rate(s),
                "unit_sale_value": accrual.unit_sale_value(s),
                "currency": s.currency,
                "total_units_produced": s.total_units_produced,
                "worker_count": s.worker_count,
                "ethics_score": s.ethics_score,
                "public_perception": s.public_perception,
                "environmental_impact": s.environmental_impact,
                "ending": s.ending_kind.value,
            }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self, now: Optional[float] = None) -> persistence.Record:
        with self._lock:
            saved_at = None
            if now is not None:
                saved_at = datetime.fromtimestamp(now, tz=timezone.utc)
            return persistence.serialize(self.state, saved_at)

    def load(self, record: Any) -> ActionResult:
        """
        Replace the live state with a snapshot of any supported version.

        An unreadable snapshot resets the simulation to defaults and is
        discarded from the store; it is never retried.
        """
        with self._lock:
            try:
                loaded = persistence.deserialize(record)
            except CorruptSnapshotError as exc:
                return self._start_fresh(exc)

            self.state = loaded
            endings.evaluate_ending(self.state, self.state.last_tick_timestamp)
            return ActionResult.success("Snapshot loaded")

    def _start_fresh(self, exc: CorruptSnapshotError) -> ActionResult:
        logger.warning("Corrupt snapshot, starting fresh: %s", exc)
        self.state = create_default_state(self.state.last_tick_timestamp)
        if self.store is not None:
            self.store.discard()
        return ActionResult.failure(ErrorKind.CORRUPT_DATA, str(exc))

    def save(self, now: Optional[float] = None) -> ActionResult:
        if self.store is None:
            return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, "No snapshot store configured")
        record = self.serialize(now)
        self.store.save(record)
        return ActionResult.success("Snapshot saved")

    def load_saved(self) -> ActionResult:
        """Load whatever the store holds; an empty store leaves the state as is."""
        if self.store is None:
            return ActionResult.failure(ErrorKind.NOT_ELIGIBLE, "No snapshot store configured")
        try:
            record = self.store.load()
        except CorruptSnapshotError as exc:
            with self._lock:
                return self._start_fresh(exc)
        if record is None:
            return ActionResult.success("No saved snapshot")
        return self.load(record)

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def telemetry_report(self) -> telemetry.TelemetryReport:
        with self._lock:
            return telemetry.collect(self.state)
