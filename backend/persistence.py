"""
Snapshot Persistence and Schema Migration

Snapshots are flat JSON-compatible dicts tagged with `schema_version`.
Older records are brought forward by a chain of pure step functions, one
per schema revision:

    V1 -> V2  id lists re-encoded as JSON strings, workforce/commerce fields added
    V2 -> V3  public perception and environmental impact added
    V3 -> V4  moral_decay inverted into ethics_score, automation_rate renamed
    V4 -> V5  legacy names replaced, ids decoded and mapped to catalog slugs

Each step rewrites the tag, so the ethics inversion runs exactly once and a
current-version record passes through unchanged. Anything that cannot be
decoded raises CorruptSnapshotError; the live state is never touched here.
"""

import json
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, confloat, conint

from config import CONFIG
from effects import effect_from_dict, effect_to_dict
from errors import CorruptSnapshotError
from events import EVENTS_BY_ID
from state import EndingKind, PendingEffect, SimulationState, UpgradeInstance
from upgrades import UPGRADES_BY_ID, resolve_legacy_id

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

CURRENT_SCHEMA_VERSION = CONFIG.persistence.current_schema_version

# Fields a legacy record cannot be read without
REQUIRED_LEGACY_FIELDS = {
    1: ("total_packages_shipped", "money", "workers", "automation_rate", "moral_decay"),
    2: ("total_packages_shipped", "money", "workers", "automation_rate", "moral_decay"),
    3: ("total_packages_shipped", "money", "workers", "automation_rate", "moral_decay"),
    4: ("total_packages_shipped", "money", "workers", "base_system_rate", "ethics_score"),
}

V4_TO_V5_RENAMES = {
    "total_packages_shipped": "total_units_produced",
    "money": "currency",
    "workers": "worker_count",
    "package_accumulator": "production_accumulator",
    "worker_efficiency": "worker_efficiency_multiplier",
    "automation_efficiency": "automation_efficiency_multiplier",
    "package_value": "unit_value",
    "corporate_ethics": "corporate_virtue",
    "last_update": "last_tick_timestamp",
}


class SnapshotRecord(BaseModel):
    """Shape and ranges of a current-version snapshot."""

    model_config = ConfigDict(extra="ignore")

    schema_version: conint(ge=1)
    saved_at: Optional[str] = None
    producer_version: str = "unknown"

    total_units_produced: conint(ge=0)
    currency: confloat(ge=0)
    lifetime_currency_earned: confloat(ge=0) = 0.0

    worker_count: conint(ge=0)
    worker_efficiency_multiplier: confloat(ge=0) = 1.0
    worker_morale: confloat(ge=0, le=1) = 0.8

    base_manual_rate: confloat(ge=0) = 1.0
    base_worker_rate: confloat(ge=0) = 0.1
    base_system_rate: confloat(ge=0) = 0.0
    automation_efficiency_multiplier: confloat(ge=0) = 1.0
    automation_level: conint(ge=0) = 0
    production_accumulator: confloat(ge=0, lt=1) = 0.0

    unit_value: confloat(ge=0) = 1.0
    customer_satisfaction: confloat(ge=0, le=1) = 0.9

    ethics_score: confloat(ge=0, le=100)
    corporate_virtue: confloat(ge=0, le=1) = 0.5
    public_perception: confloat(ge=0, le=100) = 50.0
    environmental_impact: confloat(ge=0, le=100) = 0.0
    lowest_ethics_score: Optional[confloat(ge=0, le=100)] = None

    ethical_choices_made: conint(ge=0) = 0
    purchased_upgrade_ids: List[str] = Field(default_factory=list)
    active_repeatable_instances: List[Dict[str, Any]] = Field(default_factory=list)

    is_collapsing: bool = False
    ending_kind: EndingKind = EndingKind.ONGOING
    loop_started_at: Optional[float] = None

    active_event_id: Optional[str] = None
    last_event_time: float = 0.0
    pending_effects: List[Dict[str, Any]] = Field(default_factory=list)

    last_tick_timestamp: float = 0.0


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def serialize(state: SimulationState, saved_at: Optional[datetime] = None) -> Record:
    """Current-schema snapshot of the full state."""
    saved_at = saved_at or datetime.now(timezone.utc)
    return {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "saved_at": saved_at.isoformat(),
        "producer_version": CONFIG.persistence.producer_version,
        "total_units_produced": state.total_units_produced,
        "currency": state.currency,
        "lifetime_currency_earned": state.lifetime_currency_earned,
        "worker_count": state.worker_count,
        "worker_efficiency_multiplier": state.worker_efficiency_multiplier,
        "worker_morale": state.worker_morale,
        "base_manual_rate": state.base_manual_rate,
        "base_worker_rate": state.base_worker_rate,
        "base_system_rate": state.base_system_rate,
        "automation_efficiency_multiplier": state.automation_efficiency_multiplier,
        "automation_level": state.automation_level,
        "production_accumulator": state.production_accumulator,
        "unit_value": state.unit_value,
        "customer_satisfaction": state.customer_satisfaction,
        "ethics_score": state.ethics_score,
        "corporate_virtue": state.corporate_virtue,
        "public_perception": state.public_perception,
        "environmental_impact": state.environmental_impact,
        "lowest_ethics_score": state.lowest_ethics_score,
        "ethical_choices_made": state.ethical_choices_made,
        "purchased_upgrade_ids": list(state.purchased_upgrade_ids),
        "active_repeatable_instances": [inst.to_dict() for inst in state.active_repeatable_instances],
        "is_collapsing": state.is_collapsing,
        "ending_kind": state.ending_kind.value,
        "loop_started_at": state.loop_started_at,
        "active_event_id": state.active_event_id,
        "last_event_time": state.last_event_time,
        "pending_effects": [
            {
                "trigger_at": p.trigger_at,
                "source": p.source,
                "effects": [effect_to_dict(e) for e in p.effects],
            }
            for p in state.pending_effects
        ],
        "last_tick_timestamp": state.last_tick_timestamp,
    }


def to_json(record: Record) -> str:
    return json.dumps(record, sort_keys=True)


def from_json(text: str) -> Record:
    try:
        record = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise CorruptSnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(record, dict):
        raise CorruptSnapshotError("Snapshot must be a JSON object")
    return record


# ---------------------------------------------------------------------------
# Migration steps
# ---------------------------------------------------------------------------

def _encode_ids(ids: Any, key: str) -> str:
    if ids is None:
        ids = []
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise CorruptSnapshotError(f"{key} must be a list of strings")
    return json.dumps(ids)


def _decode_ids(encoded: Any, key: str) -> List[str]:
    if encoded is None or encoded == "":
        return []
    if not isinstance(encoded, str):
        raise CorruptSnapshotError(f"{key} must be a JSON-encoded string")
    try:
        ids = json.loads(encoded)
    except ValueError as exc:
        raise CorruptSnapshotError(f"{key} is not decodable: {exc}") from exc
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise CorruptSnapshotError(f"{key} must decode to a list of strings")
    return ids


def migrate_v1_to_v2(record: Record) -> Record:
    """Re-encode id lists as JSON strings and add workforce/commerce fields."""
    out = dict(record)
    out["purchased_upgrade_ids_string"] = _encode_ids(out.pop("purchased_upgrade_ids", []), "purchased_upgrade_ids")
    out["repeatable_upgrade_ids_string"] = _encode_ids(
        out.pop("repeatable_upgrade_ids", []), "repeatable_upgrade_ids"
    )
    out.setdefault("worker_efficiency", 1.0)
    out.setdefault("worker_morale", 0.8)
    out.setdefault("customer_satisfaction", 0.9)
    out.setdefault("package_value", 1.0)
    out.setdefault("automation_efficiency", 1.0)
    out.setdefault("automation_level", 0)
    out.setdefault("corporate_ethics", 0.5)
    out["schema_version"] = 2
    return out


def migrate_v2_to_v3(record: Record) -> Record:
    """Add reputation fields."""
    out = dict(record)
    out.setdefault("public_perception", 50.0)
    out.setdefault("environmental_impact", 0.0)
    out["schema_version"] = 3
    return out


def migrate_v3_to_v4(record: Record) -> Record:
    """Invert moral decay into an ethics score and rename the automation rate."""
    out = dict(record)
    moral_decay = out.pop("moral_decay")
    if not isinstance(moral_decay, (int, float)) or isinstance(moral_decay, bool):
        raise CorruptSnapshotError("moral_decay must be numeric")
    out["ethics_score"] = max(0.0, min(100.0, 100.0 - moral_decay))
    out["base_system_rate"] = out.pop("automation_rate")
    out.setdefault("base_worker_rate", CONFIG.defaults.base_worker_rate)
    out.setdefault("saved_at", None)
    out.setdefault("producer_version", "legacy")
    out["schema_version"] = 4
    return out


def _legacy_ending(record: Record) -> str:
    raw = record.pop("ending_type", None)
    is_collapsing = bool(record.get("is_collapsing", False))
    if raw is None:
        return EndingKind.COLLAPSE.value if is_collapsing else EndingKind.ONGOING.value
    value = str(raw).lower()
    if value == EndingKind.COLLAPSE.value:
        # Older saves stored "collapse" as the default even while still playing
        return EndingKind.COLLAPSE.value if is_collapsing else EndingKind.ONGOING.value
    if value in (EndingKind.REFORM.value, EndingKind.LOOP.value):
        return value
    logger.warning("Unknown legacy ending %r, treating as ongoing", raw)
    return EndingKind.ONGOING.value


def _map_upgrade_ids(raw_ids: List[str]) -> List[str]:
    mapped = []
    for raw_id in raw_ids:
        upgrade_id = resolve_legacy_id(raw_id)
        if upgrade_id is None:
            logger.warning("Dropping unknown upgrade id %s", raw_id)
            continue
        mapped.append(upgrade_id)
    return mapped


def _instances_from_counts(purchased: List[str], timestamp: float) -> List[Dict[str, Any]]:
    counts = Counter(purchased)
    instances = []
    for upgrade_id, count in counts.items():
        if UPGRADES_BY_ID[upgrade_id].repeatable:
            instances.extend(
                UpgradeInstance(
                    upgrade_id=upgrade_id,
                    instance_id=f"legacy-{upgrade_id}-{n}",
                    purchased_at=timestamp,
                ).to_dict()
                for n in range(count)
            )
    return instances


def migrate_v4_to_v5(record: Record) -> Record:
    """Move to current field names and catalog ids."""
    out = dict(record)
    for old, new in V4_TO_V5_RENAMES.items():
        if old in out:
            out[new] = out.pop(old)

    purchased = _decode_ids(out.pop("purchased_upgrade_ids_string", None), "purchased_upgrade_ids_string")
    # Legacy instance ids were regenerated on every launch; rebuilt from counts below
    _decode_ids(out.pop("repeatable_upgrade_ids_string", None), "repeatable_upgrade_ids_string")
    out["purchased_upgrade_ids"] = _map_upgrade_ids(purchased)

    out["ending_kind"] = _legacy_ending(out)

    # Fold any whole units left in the accumulator into the counter
    accumulator = out.get("production_accumulator", 0.0) or 0.0
    if isinstance(accumulator, (int, float)) and accumulator >= 1:
        whole = int(accumulator)
        out["total_units_produced"] = out.get("total_units_produced", 0) + whole
        out["production_accumulator"] = accumulator - whole

    timestamp = out.get("last_tick_timestamp", 0.0) or 0.0
    out["active_repeatable_instances"] = _instances_from_counts(out["purchased_upgrade_ids"], timestamp)
    out.setdefault("lifetime_currency_earned", out.get("currency", 0.0))
    out.setdefault("base_manual_rate", CONFIG.defaults.base_manual_rate)
    out.setdefault("lowest_ethics_score", out.get("ethics_score"))
    out.setdefault("loop_started_at", None)
    out.setdefault("active_event_id", None)
    out.setdefault("last_event_time", timestamp)
    out.setdefault("pending_effects", [])
    out["schema_version"] = 5
    return out


MIGRATIONS: Dict[int, Callable[[Record], Record]] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
    3: migrate_v3_to_v4,
    4: migrate_v4_to_v5,
}


def detect_schema_version(record: Record) -> int:
    """Read the version tag, or classify an untagged record by its shape."""
    for key in ("schema_version", "save_version"):
        if key in record:
            version = record[key]
            if isinstance(version, bool) or not isinstance(version, int):
                raise CorruptSnapshotError(f"{key} must be an integer, got {version!r}")
            return version

    if "total_units_produced" in record:
        return 5
    if "ethics_score" in record or "base_worker_rate" in record:
        return 4
    if "public_perception" in record:
        return 3
    if "purchased_upgrade_ids_string" in record:
        return 2
    if "moral_decay" in record:
        return 1
    raise CorruptSnapshotError("Unrecognized snapshot shape")


def migrate(record: Any) -> Record:
    """
    Bring a snapshot of any known version up to the current schema.

    Raises:
        CorruptSnapshotError: non-dict input, unknown or future version,
            missing legacy fields, or undecodable values
    """
    if not isinstance(record, dict):
        raise CorruptSnapshotError(f"Snapshot must be a dict, got {type(record).__name__}")

    version = detect_schema_version(record)
    if version < 1 or version > CURRENT_SCHEMA_VERSION:
        raise CorruptSnapshotError(f"Unsupported schema version {version}")

    out = dict(record)
    out.pop("save_version", None)
    out["schema_version"] = version

    required = REQUIRED_LEGACY_FIELDS.get(version, ())
    missing = [key for key in required if key not in out]
    if missing:
        raise CorruptSnapshotError(f"Schema V{version} snapshot missing fields: {', '.join(missing)}")

    while version < CURRENT_SCHEMA_VERSION:
        try:
            out = MIGRATIONS[version](out)
        except CorruptSnapshotError:
            raise
        except (TypeError, ValueError, KeyError) as exc:
            raise CorruptSnapshotError(f"Schema V{version} snapshot has malformed values: {exc}") from exc
        logger.info("Migrated snapshot from schema V%d to V%d", version, out["schema_version"])
        version = out["schema_version"]
    return out


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------

def _build_pending(entries: List[Dict[str, Any]]) -> List[PendingEffect]:
    pending = []
    for entry in entries:
        try:
            effects = [effect_from_dict(e) for e in entry.get("effects", [])]
            pending.append(
                PendingEffect(
                    trigger_at=float(entry["trigger_at"]),
                    effects=effects,
                    source=str(entry.get("source", "")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptSnapshotError(f"Invalid pending effect: {exc}") from exc
    return pending


def _build_instances(entries: List[Dict[str, Any]]) -> List[UpgradeInstance]:
    instances = []
    for entry in entries:
        try:
            upgrade_id = resolve_legacy_id(str(entry["upgrade_id"]))
            if upgrade_id is None:
                logger.warning("Dropping instance of unknown upgrade %s", entry["upgrade_id"])
                continue
            instance = UpgradeInstance(upgrade_id=upgrade_id, purchased_at=float(entry.get("purchased_at", 0.0)))
            if entry.get("instance_id"):
                instance.instance_id = str(entry["instance_id"])
            instances.append(instance)
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptSnapshotError(f"Invalid upgrade instance: {exc}") from exc
    return instances


def deserialize(record: Any) -> SimulationState:
    """
    Build a SimulationState from a snapshot of any supported version.

    Load-time safety caps are applied here: worker count and the number of
    purchased ids are bounded by PersistenceConfig.
    """
    migrated = migrate(record)
    try:
        snapshot = SnapshotRecord.model_validate(migrated)
    except ValidationError as exc:
        raise CorruptSnapshotError(f"Snapshot failed validation: {exc}") from exc

    caps = CONFIG.persistence
    purchased = _map_upgrade_ids(snapshot.purchased_upgrade_ids)
    if len(purchased) > caps.max_purchased_ids:
        logger.warning("Truncating %d purchased ids to %d", len(purchased), caps.max_purchased_ids)
        purchased = purchased[:caps.max_purchased_ids]

    worker_count = snapshot.worker_count
    if worker_count > caps.max_workers:
        logger.warning("Capping worker count %d to %d", worker_count, caps.max_workers)
        worker_count = caps.max_workers

    active_event_id = snapshot.active_event_id
    if active_event_id is not None and active_event_id not in EVENTS_BY_ID:
        logger.warning("Dropping unknown active event %s", active_event_id)
        active_event_id = None

    ending = snapshot.ending_kind
    state = SimulationState(
        total_units_produced=snapshot.total_units_produced,
        currency=snapshot.currency,
        lifetime_currency_earned=snapshot.lifetime_currency_earned,
        worker_count=worker_count,
        worker_efficiency_multiplier=snapshot.worker_efficiency_multiplier,
        worker_morale=snapshot.worker_morale,
        base_manual_rate=snapshot.base_manual_rate,
        base_worker_rate=snapshot.base_worker_rate,
        base_system_rate=snapshot.base_system_rate,
        automation_efficiency_multiplier=snapshot.automation_efficiency_multiplier,
        automation_level=snapshot.automation_level,
        production_accumulator=snapshot.production_accumulator,
        unit_value=snapshot.unit_value,
        customer_satisfaction=snapshot.customer_satisfaction,
        ethics_score=snapshot.ethics_score,
        corporate_virtue=snapshot.corporate_virtue,
        public_perception=snapshot.public_perception,
        environmental_impact=snapshot.environmental_impact,
        lowest_ethics_score=(
            snapshot.lowest_ethics_score if snapshot.lowest_ethics_score is not None else snapshot.ethics_score
        ),
        ethical_choices_made=snapshot.ethical_choices_made,
        purchased_upgrade_ids=purchased,
        active_repeatable_instances=_build_instances(snapshot.active_repeatable_instances),
        is_collapsing=snapshot.is_collapsing or ending is EndingKind.COLLAPSE,
        ending_kind=EndingKind.COLLAPSE if snapshot.is_collapsing else ending,
        loop_started_at=snapshot.loop_started_at,
        active_event_id=active_event_id,
        last_event_time=snapshot.last_event_time,
        pending_effects=_build_pending(snapshot.pending_effects),
        last_tick_timestamp=snapshot.last_tick_timestamp,
    )
    state.clamp_bounds()
    return state
