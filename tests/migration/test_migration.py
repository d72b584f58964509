"""Tests for storage mode switching, backups and restore."""

from datetime import date

import pytest

from growthsync.core.errors import MigrationError
from growthsync.migration.manager import MigrationManager, derived_record_id
from growthsync.models.metric_models import IndividualRecord, SyncMode
from growthsync.models.sync_models import FieldMapping
from growthsync.storage.metrics_store import MetricsStore
from growthsync.sync.normalizer import normalize_daily

D1 = date(2024, 1, 1)
D2 = date(2024, 1, 2)


@pytest.fixture
def store(session):
    return MetricsStore(session)


@pytest.fixture
def manager(session):
    return MigrationManager(session, default_record_type="converted_sale")


@pytest.fixture
async def seeded(store, make_raw):
    mapping = FieldMapping(fields={"B": "spend", "C": "clicks", "D": "impressions", "E": "leads",
                                   "F": "note"})
    sheet = normalize_daily([
        make_raw("sheet", D1, B="12.5", C="4", D="400", E="2", F="spring"),
        make_raw("sheet", D2, B="7.25", C="1", D="90"),
    ], mapping, "p1", "sheet")
    ads = normalize_daily([make_raw("ads", D1, B="80", C="10", D="1000")], mapping, "p1", "ads")
    await store.upsert_daily(sheet + ads)
    return store


def snapshot(rows):
    return sorted((r.date, r.source, r.metric_values(), dict(r.extra_data or {})) for r in rows)


def sale(record_id, day, amount, record_type="sale"):
    return IndividualRecord(
        project_id="p1", record_id=record_id, date=day, source="sheet",
        record_type=record_type, amount=amount,
    )


# ── Read-only checks ─────────────────────────────────────────────────────────

class TestStatsAndValidation:
    async def test_stats(self, manager, seeded):
        stats = await manager.get_project_data_stats("p1")
        assert stats.daily_metrics_count == 3
        assert stats.individual_records_count == 0
        assert (stats.earliest_date, stats.latest_date) == (D1, D2)
        assert stats.current_mode == SyncMode.DAILY_AGGREGATE

    async def test_validate_to_individual(self, manager, seeded):
        result = await manager.validate_mode_switch("p1", SyncMode.INDIVIDUAL_RECORDS)
        assert result.can_switch is True
        assert any("3 daily aggregate rows" in w for w in result.warnings)
        assert result.recommendations

    async def test_validate_same_mode(self, manager):
        result = await manager.validate_mode_switch("p1", SyncMode.DAILY_AGGREGATE)
        assert result.can_switch is True
        assert "already" in result.warnings[0]

    async def test_validate_multiple_record_types_and_large_dataset(self, session, store):
        await store.upsert_individual([
            sale("s1", D1, 10.0), sale("l1", D1, None, "lead"), sale("s2", D2, 5.0),
        ])
        await store.set_mode("p1", SyncMode.INDIVIDUAL_RECORDS)
        manager = MigrationManager(session, large_dataset_threshold=2)
        result = await manager.validate_mode_switch("p1", SyncMode.DAILY_AGGREGATE)
        assert result.can_switch is True
        assert any("lead, sale" in w for w in result.warnings)
        assert any("Large dataset" in w for w in result.warnings)


# ── Conversions ──────────────────────────────────────────────────────────────

class TestSwitchMode:
    async def test_daily_to_individual(self, manager, seeded, store):
        result = await manager.switch_mode("p1", SyncMode.INDIVIDUAL_RECORDS)

        assert result.success
        assert result.old_mode == SyncMode.DAILY_AGGREGATE
        assert result.records_converted == 3
        assert result.backup_name.startswith("backup_p1_")
        assert await store.get_mode("p1") == SyncMode.INDIVIDUAL_RECORDS

        records = {r.record_id: r for r in await store.query_individual("p1")}
        assert set(records) == {
            derived_record_id("sheet", D1), derived_record_id("sheet", D2),
            derived_record_id("ads", D1),
        }
        converted = records["agg:sheet:2024-01-01"]
        assert converted.record_type == "converted_sale"
        assert converted.record_data["metrics"]["spend"] == 12.5

    async def test_round_trip_reproduces_daily_rows(self, manager, seeded, store):
        original = snapshot(await store.query_daily("p1"))

        to_individual = await manager.switch_mode(
            "p1", SyncMode.INDIVIDUAL_RECORDS, preserve_existing_data=False
        )
        back = await manager.switch_mode(
            "p1", SyncMode.DAILY_AGGREGATE, preserve_existing_data=False
        )

        assert to_individual.success and back.success
        assert back.records_converted == 3
        assert snapshot(await store.query_daily("p1")) == original

    async def test_individual_to_daily_merges(self, manager, store):
        await store.upsert_individual([
            sale("s1", D1, 40.0), sale("s2", D1, 60.0), sale("l1", D1, None, "lead"),
        ])
        await store.set_mode("p1", SyncMode.INDIVIDUAL_RECORDS)

        result = await manager.switch_mode("p1", SyncMode.DAILY_AGGREGATE)

        assert result.success
        assert result.records_converted == 1
        assert any("multiple record types" in w for w in result.warnings)
        [row] = await store.query_daily("p1")
        assert row.revenue == 100.0
        assert row.extra_data == {"sale_count": 2, "lead_count": 1}
        # Preserved: individual records are left in place
        assert await store.count_individual("p1") == 3

    async def test_same_mode_is_noop_success(self, manager, seeded, store):
        result = await manager.switch_mode("p1", SyncMode.DAILY_AGGREGATE, create_backup=False)
        assert result.success
        assert result.records_converted == 0
        assert result.warnings
        assert await store.count_individual("p1") == 0

    async def test_backup_failure_aborts(self, manager, seeded, store, monkeypatch):
        async def broken_backup(project_id, reason=""):
            raise MigrationError("Could not write backup (OperationalError)")

        monkeypatch.setattr(manager, "create_backup", broken_backup)
        result = await manager.switch_mode("p1", SyncMode.INDIVIDUAL_RECORDS)

        assert not result.success
        assert "backup" in result.error_message
        assert await store.get_mode("p1") == SyncMode.DAILY_AGGREGATE
        assert await store.count_individual("p1") == 0

    async def test_conversion_failure_rolls_back_and_keeps_backup(
        self, manager, seeded, store, monkeypatch
    ):
        before = snapshot(await store.query_daily("p1"))

        async def broken_upsert(records, commit=True):
            raise RuntimeError("disk full")

        monkeypatch.setattr(manager.store, "upsert_individual", broken_upsert)
        result = await manager.switch_mode(
            "p1", SyncMode.INDIVIDUAL_RECORDS, preserve_existing_data=False
        )

        assert not result.success
        assert result.error_message == "Unexpected error (RuntimeError)"
        assert result.backup_name
        assert [b.name for b in await manager.list_backups("p1")] == [result.backup_name]
        assert await store.get_mode("p1") == SyncMode.DAILY_AGGREGATE
        assert snapshot(await store.query_daily("p1")) == before


# ── Backups ──────────────────────────────────────────────────────────────────

class TestBackups:
    async def test_create_and_list(self, manager, seeded):
        backup = await manager.create_backup("p1", reason="manual")
        [info] = await manager.list_backups("p1")
        assert info.name == backup.name
        assert info.row_count == 3
        assert info.sync_mode == SyncMode.DAILY_AGGREGATE
        assert info.reason == "manual"
        assert await manager.list_backups("other") == []

    async def test_restore_after_switch(self, manager, seeded, store):
        original = snapshot(await store.query_daily("p1"))
        switched = await manager.switch_mode(
            "p1", SyncMode.INDIVIDUAL_RECORDS, preserve_existing_data=False
        )
        await store.delete_daily("p1")

        restored = await manager.restore_from_backup("p1", switched.backup_name)

        assert restored.success
        assert restored.restored_records == 3
        assert restored.restored_mode == SyncMode.DAILY_AGGREGATE
        assert await store.get_mode("p1") == SyncMode.DAILY_AGGREGATE
        assert await store.count_individual("p1") == 0
        assert snapshot(await store.query_daily("p1")) == original

    async def test_restore_unknown(self, manager):
        result = await manager.restore_from_backup("p1", "backup_p1_missing")
        assert not result.success
        assert "not found" in result.error_message

    async def test_restore_other_projects_backup_refused(self, manager, seeded):
        backup = await manager.create_backup("p1")
        result = await manager.restore_from_backup("p2", backup.name)
        assert not result.success
