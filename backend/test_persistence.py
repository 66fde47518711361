"""
Unit tests for snapshot serialization and schema migration

Tests cover:
- Each migration step in isolation
- Full chains from every historical version
- Idempotence and single application of the ethics inversion
- Corrupt input handling and load-time caps
"""

import json
import logging

import pytest

from effects import AddField, Delayed
from errors import CorruptSnapshotError
from persistence import (
    CURRENT_SCHEMA_VERSION,
    deserialize,
    detect_schema_version,
    from_json,
    migrate,
    migrate_v1_to_v2,
    migrate_v3_to_v4,
    migrate_v4_to_v5,
    serialize,
    to_json,
)
from state import EndingKind, PendingEffect, UpgradeInstance, create_default_state
from upgrades import legacy_upgrade_id


def v1_record(**overrides):
    record = {
        "total_packages_shipped": 320,
        "money": 145.5,
        "workers": 3,
        "automation_rate": 0.25,
        "moral_decay": 80.0,
        "is_collapsing": False,
        "last_update": 1000.0,
        "package_accumulator": 0.4,
        "ethical_choices_made": 2,
        "ending_type": "collapse",
        "purchased_upgrade_ids": [],
        "repeatable_upgrade_ids": [],
    }
    record.update(overrides)
    return record


def v4_record(**overrides):
    record = migrate_v3_to_v4({**migrate_v1_to_v2(v1_record()), "schema_version": 3,
                               "public_perception": 40.0, "environmental_impact": 12.0})
    record.update(overrides)
    return record


class TestMigrationSteps:

    def test_v1_to_v2_encodes_empty_lists(self):
        out = migrate_v1_to_v2(v1_record())
        assert out["purchased_upgrade_ids_string"] == "[]"
        assert out["repeatable_upgrade_ids_string"] == "[]"
        assert "purchased_upgrade_ids" not in out
        assert out["worker_morale"] == 0.8
        assert out["corporate_ethics"] == 0.5
        assert out["schema_version"] == 2

    def test_v1_to_v2_encodes_ids_exactly(self):
        ids = [legacy_upgrade_id("Hire Worker"), legacy_upgrade_id("Improve Packaging")]
        out = migrate_v1_to_v2(v1_record(purchased_upgrade_ids=ids))
        assert json.loads(out["purchased_upgrade_ids_string"]) == ids

    def test_v3_to_v4_inverts_decay(self):
        out = migrate_v3_to_v4({"moral_decay": 80.0, "automation_rate": 0.25, "schema_version": 3})
        assert out["ethics_score"] == pytest.approx(20.0)
        assert "moral_decay" not in out
        assert out["base_system_rate"] == 0.25
        assert "automation_rate" not in out
        assert out["base_worker_rate"] == 0.1

    def test_v3_to_v4_clamps_out_of_range_decay(self):
        assert migrate_v3_to_v4({"moral_decay": 130.0, "automation_rate": 0.0})["ethics_score"] == 0.0
        assert migrate_v3_to_v4({"moral_decay": -5.0, "automation_rate": 0.0})["ethics_score"] == 100.0

    def test_v4_to_v5_renames_and_decodes(self):
        out = migrate_v4_to_v5(v4_record())
        assert out["total_units_produced"] == 320
        assert out["currency"] == 145.5
        assert out["worker_count"] == 3
        assert out["production_accumulator"] == pytest.approx(0.4)
        assert out["last_tick_timestamp"] == 1000.0
        assert out["purchased_upgrade_ids"] == []
        assert "money" not in out
        assert out["schema_version"] == 5

    def test_legacy_collapse_default_means_ongoing(self):
        assert migrate_v4_to_v5(v4_record())["ending_kind"] == EndingKind.ONGOING.value
        collapsed = migrate_v4_to_v5(v4_record(is_collapsing=True))
        assert collapsed["ending_kind"] == EndingKind.COLLAPSE.value

    def test_legacy_ids_mapped_and_instances_rebuilt(self):
        hire = legacy_upgrade_id("Hire Worker").upper()
        packaging = legacy_upgrade_id("Improve Packaging").upper()
        encoded = json.dumps([hire, hire, packaging])

        out = migrate_v4_to_v5(v4_record(purchased_upgrade_ids_string=encoded))

        assert sorted(out["purchased_upgrade_ids"]) == ["hire_worker", "hire_worker", "improve_packaging"]
        instances = out["active_repeatable_instances"]
        assert [i["upgrade_id"] for i in instances] == ["hire_worker", "hire_worker"]
        assert instances[0]["instance_id"] != instances[1]["instance_id"]

    def test_unknown_legacy_ids_dropped_with_warning(self, caplog):
        encoded = json.dumps(["DEADBEEF-0000-0000-0000-000000000000"])
        with caplog.at_level(logging.WARNING):
            out = migrate_v4_to_v5(v4_record(purchased_upgrade_ids_string=encoded))
        assert out["purchased_upgrade_ids"] == []
        assert "Dropping unknown upgrade id" in caplog.text

    def test_undecodable_id_string_is_corrupt(self):
        with pytest.raises(CorruptSnapshotError):
            migrate_v4_to_v5(v4_record(purchased_upgrade_ids_string="[not json"))

    def test_whole_units_in_accumulator_folded(self):
        out = migrate_v4_to_v5(v4_record(package_accumulator=2.5))
        assert out["total_units_produced"] == 322
        assert out["production_accumulator"] == pytest.approx(0.5)


class TestMigrationChain:

    def test_v1_decay_80_becomes_ethics_20(self):
        state = deserialize(v1_record())
        assert state.ethics_score == pytest.approx(20.0)
        assert state.ending_kind is EndingKind.ONGOING
        assert state.total_units_produced == 320
        assert state.base_system_rate == 0.25
        assert state.public_perception == 50.0

    def test_every_historical_version_reaches_current(self):
        v2 = migrate_v1_to_v2(v1_record())
        v3 = {**v2, "schema_version": 3, "public_perception": 50.0, "environmental_impact": 0.0}
        v4 = migrate_v3_to_v4(v3)
        for record in (v1_record(), v2, v3, v4):
            assert migrate(record)["schema_version"] == CURRENT_SCHEMA_VERSION
            assert deserialize(record).ethics_score == pytest.approx(20.0)

    def test_migration_is_idempotent(self):
        once = migrate(v1_record())
        assert migrate(once) == once
        assert migrate(v1_record()) == once

    def test_inversion_never_reapplied(self):
        once = migrate(v1_record())
        twice = migrate(migrate(once))
        assert twice["ethics_score"] == pytest.approx(20.0)

    def test_input_not_mutated(self):
        record = v1_record()
        original = dict(record)
        migrate(record)
        assert record == original

    def test_untagged_records_detected_by_shape(self):
        assert detect_schema_version(v1_record()) == 1
        v2 = migrate_v1_to_v2(v1_record())
        del v2["schema_version"]
        assert detect_schema_version(v2) == 2
        assert detect_schema_version({**v2, "public_perception": 50.0}) == 3
        assert detect_schema_version({"save_version": 4}) == 4
        assert detect_schema_version(serialize(create_default_state())) == CURRENT_SCHEMA_VERSION


class TestCorruptData:

    def test_future_version_rejected(self):
        with pytest.raises(CorruptSnapshotError, match="Unsupported schema version"):
            migrate({"schema_version": CURRENT_SCHEMA_VERSION + 1})

    def test_non_dict_rejected(self):
        with pytest.raises(CorruptSnapshotError):
            migrate(["not", "a", "snapshot"])

    def test_missing_legacy_fields_rejected(self):
        record = v1_record()
        del record["money"]
        with pytest.raises(CorruptSnapshotError, match="money"):
            migrate(record)

    def test_unknown_shape_rejected(self):
        with pytest.raises(CorruptSnapshotError, match="Unrecognized"):
            migrate({"hello": "world"})

    def test_invalid_current_values_rejected(self):
        record = serialize(create_default_state())
        record["currency"] = -5.0
        with pytest.raises(CorruptSnapshotError, match="validation"):
            deserialize(record)

    def test_malformed_legacy_counter_rejected(self):
        record = v4_record(total_packages_shipped="12", package_accumulator=1.5)
        with pytest.raises(CorruptSnapshotError, match="malformed"):
            migrate(record)

    def test_bad_json_rejected(self):
        with pytest.raises(CorruptSnapshotError):
            from_json("{truncated")
        with pytest.raises(CorruptSnapshotError):
            from_json("[1, 2, 3]")


class TestCurrentSchema:

    def test_full_state_survives_round_trip(self):
        state = create_default_state(now=50.0)
        state.currency = 1234.5
        state.lifetime_currency_earned = 4000.0
        state.worker_count = 7
        state.total_units_produced = 999
        state.production_accumulator = 0.25
        state.ethics_score = 64.0
        state.lowest_ethics_score = 55.0
        state.purchased_upgrade_ids = ["hire_worker", "hire_worker", "improve_packaging"]
        state.active_repeatable_instances = [UpgradeInstance("hire_worker"), UpgradeInstance("hire_worker")]
        state.active_event_id = "market_boom"
        state.pending_effects = [
            PendingEffect(trigger_at=90.0, effects=[Delayed(5.0, (AddField("currency", -1.0),), 0.5)], source="x")
        ]

        restored = deserialize(from_json(to_json(serialize(state))))

        assert restored.to_dict() == state.to_dict()
        assert restored.pending_effects[0].effects == state.pending_effects[0].effects

    def test_worker_cap(self):
        record = serialize(create_default_state())
        record["worker_count"] = 10_000
        assert deserialize(record).worker_count == 150

    def test_purchased_id_cap(self):
        record = serialize(create_default_state())
        record["purchased_upgrade_ids"] = ["hire_worker"] * 600
        assert len(deserialize(record).purchased_upgrade_ids) == 500

    def test_unknown_active_event_dropped(self):
        record = serialize(create_default_state())
        record["active_event_id"] = "alien_invasion"
        assert deserialize(record).active_event_id is None

    def test_collapse_flag_forces_collapse_ending(self):
        record = serialize(create_default_state())
        record["is_collapsing"] = True
        state = deserialize(record)
        assert state.ending_kind is EndingKind.COLLAPSE
