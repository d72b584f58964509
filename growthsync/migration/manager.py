"""GrowthSync — Mode Migration Manager.

Converts a project's stored metrics between daily aggregates and individual
records. ``switch_mode`` follows a fixed order:

1. snapshot both tables into a ``BackupSnapshot`` (committed on its own; if it
   cannot be written nothing else happens),
2. convert in one transaction, deleting the target table first when existing
   data is not preserved,
3. record the new mode.

A failure in step 2 or 3 rolls the conversion back and leaves the backup in
place for ``restore_from_backup``.
"""

from datetime import datetime, timezone
from typing import List, Tuple

from sqlmodel import Session, select

from growthsync.config import settings
from growthsync.core.errors import MigrationError, public_message
from growthsync.core.logging import get_logger
from growthsync.models.metric_models import DailyMetricRecord, IndividualRecord, SyncMode
from growthsync.models.migration_models import (
    BackupInfo,
    BackupSnapshot,
    MigrationResult,
    ModeSwitchValidation,
    ProjectDataStats,
    RestoreResult,
)
from growthsync.storage.metrics_store import MetricsStore, UserIdProvider
from growthsync.sync.normalizer import CONVERTED_ORIGIN, aggregate_individual_records

logger = get_logger("migration")

_SNAPSHOT_EXCLUDE = {"id"}


def derived_record_id(source: str, day) -> str:
    """Stable id for the individual record converted from one daily row."""
    return f"agg:{source}:{day.isoformat()}"


class MigrationManager:
    """Sole writer of backups and sole bulk converter between storage modes."""

    def __init__(
        self,
        session: Session,
        user_id_provider: UserIdProvider | None = None,
        default_record_type: str | None = None,
        large_dataset_threshold: int | None = None,
    ):
        self.session = session
        self.store = MetricsStore(session, user_id_provider)
        self.default_record_type = default_record_type or settings.default_record_type
        self.large_dataset_threshold = (
            settings.large_dataset_threshold
            if large_dataset_threshold is None
            else large_dataset_threshold
        )

    # ── Read-only ──

    async def get_project_data_stats(self, project_id: str) -> ProjectDataStats:
        earliest, latest = await self.store.date_bounds(project_id)
        return ProjectDataStats(
            daily_metrics_count=await self.store.count_daily(project_id),
            individual_records_count=await self.store.count_individual(project_id),
            earliest_date=earliest,
            latest_date=latest,
            record_types=sorted(await self.store.record_types(project_id)),
            current_mode=await self.store.get_mode(project_id),
        )

    async def validate_mode_switch(
        self, project_id: str, target_mode: SyncMode
    ) -> ModeSwitchValidation:
        """Flag risks of a switch. Never refuses it."""
        stats = await self.get_project_data_stats(project_id)
        result = ModeSwitchValidation(target_mode=target_mode)

        if stats.current_mode == target_mode:
            result.warnings.append(f"Project is already in {target_mode.value} mode")
            return result

        if target_mode == SyncMode.INDIVIDUAL_RECORDS:
            source_count = stats.daily_metrics_count
            if source_count:
                result.warnings.append(
                    f"{source_count} daily aggregate rows will each become one "
                    f"'{self.default_record_type}' record"
                )
                result.recommendations.append(
                    "Configure a unique id field on each source before the next sync"
                )
        else:
            source_count = stats.individual_records_count
            if source_count:
                result.warnings.append(
                    f"{source_count} individual records will be merged into daily aggregates"
                )
            if len(stats.record_types) > 1:
                result.warnings.append(
                    "Multiple record types will be merged together: "
                    + ", ".join(stats.record_types)
                )

        if source_count > self.large_dataset_threshold:
            result.warnings.append(
                f"Large dataset ({source_count} rows); conversion may take a while"
            )
        if stats.daily_metrics_count or stats.individual_records_count:
            result.recommendations.append("Keep create_backup enabled for this switch")
        return result

    # ── Backups ──

    async def create_backup(self, project_id: str, reason: str = "") -> BackupSnapshot:
        """Snapshot both tables for the project and commit it immediately."""
        daily = await self.store.query_daily(project_id)
        individual = await self.store.query_individual(project_id)
        now = datetime.now(timezone.utc)
        snapshot = BackupSnapshot(
            name=f"backup_{project_id}_{now:%Y%m%d_%H%M%S_%f}",
            project_id=project_id,
            sync_mode=await self.store.get_mode(project_id),
            reason=reason,
            row_count=len(daily) + len(individual),
            payload={
                "daily": [r.model_dump(mode="json", exclude=_SNAPSHOT_EXCLUDE) for r in daily],
                "individual": [
                    r.model_dump(mode="json", exclude=_SNAPSHOT_EXCLUDE) for r in individual
                ],
            },
            created_at=now,
        )
        try:
            self.session.add(snapshot)
            self.session.commit()
            self.session.refresh(snapshot)
        except Exception as e:
            self.session.rollback()
            raise MigrationError(f"Could not write backup ({type(e).__name__})") from e

        logger.info(
            f"Backup {snapshot.name} created with {snapshot.row_count} rows",
            extra={"project_id": project_id},
        )
        return snapshot

    async def list_backups(self, project_id: str) -> List[BackupInfo]:
        rows = self.session.exec(
            select(BackupSnapshot)
            .where(BackupSnapshot.project_id == project_id)
            .order_by(BackupSnapshot.created_at.desc(), BackupSnapshot.id.desc())
        ).all()
        return [
            BackupInfo(
                name=r.name,
                project_id=r.project_id,
                sync_mode=r.sync_mode,
                row_count=r.row_count,
                reason=r.reason,
                created_at=r.created_at,
            )
            for r in rows
        ]

    async def restore_from_backup(self, project_id: str, backup_name: str) -> RestoreResult:
        """Replace both tables with the snapshot's rows and restore its mode."""
        snapshot = self.session.exec(
            select(BackupSnapshot).where(BackupSnapshot.name == backup_name)
        ).first()
        if snapshot is None or snapshot.project_id != project_id:
            return RestoreResult(
                success=False, error_message=f"Backup '{backup_name}' not found"
            )

        try:
            await self.store.delete_daily(project_id, commit=False)
            await self.store.delete_individual(project_id, commit=False)
            # Deletes must reach the database before re-inserting the same keys
            self.session.flush()

            payload = snapshot.payload or {}
            for row in payload.get("daily", []):
                self.session.add(DailyMetricRecord.model_validate(row))
            for row in payload.get("individual", []):
                self.session.add(IndividualRecord.model_validate(row))
            await self.store.set_mode(project_id, snapshot.sync_mode, commit=False)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(
                f"Restore of {backup_name} failed ({type(e).__name__})",
                extra={"project_id": project_id},
            )
            return RestoreResult(success=False, error_message=public_message(e))

        restored = len(payload.get("daily", [])) + len(payload.get("individual", []))
        logger.info(f"Restored {restored} rows from {backup_name}", extra={"project_id": project_id})
        return RestoreResult(
            success=True, restored_records=restored, restored_mode=snapshot.sync_mode
        )

    # ── Conversions ──

    async def convert_daily_to_individual(
        self,
        project_id: str,
        record_type: str | None = None,
        preserve_existing_data: bool = True,
        source: str | None = None,
        commit: bool = True,
    ) -> int:
        """Each daily row becomes one record with id ``agg:<source>:<date>``.

        The record carries the row's metrics so converting back reproduces it.
        """
        daily = await self.store.query_daily(project_id, source=source)
        if not preserve_existing_data:
            await self.store.delete_individual(project_id, source=source, commit=False)
            self.session.flush()

        records = [
            IndividualRecord(
                project_id=project_id,
                record_id=derived_record_id(row.source, row.date),
                date=row.date,
                source=row.source,
                record_type=record_type or self.default_record_type,
                amount=row.revenue,
                user_id=row.user_id,
                record_data={
                    "_origin": CONVERTED_ORIGIN,
                    "metrics": row.metric_values(),
                    "extra": dict(row.extra_data or {}),
                },
            )
            for row in daily
        ]
        await self.store.upsert_individual(records, commit=commit)
        return len(records)

    async def convert_individual_to_daily(
        self,
        project_id: str,
        preserve_existing_data: bool = True,
        source: str | None = None,
        commit: bool = True,
    ) -> Tuple[int, List[str]]:
        """Merge records per (date, source) with the registry rules.

        Returns the number of daily rows written and any warnings.
        """
        records = await self.store.query_individual(project_id, source=source)
        daily, record_types = aggregate_individual_records(records, project_id)

        warnings: List[str] = []
        if len(record_types) > 1:
            warnings.append(
                "Merged multiple record types into daily aggregates: "
                + ", ".join(sorted(record_types))
            )

        if not preserve_existing_data:
            await self.store.delete_daily(project_id, source=source, commit=False)
            self.session.flush()

        await self.store.upsert_daily(daily, commit=commit)
        return len(daily), warnings

    # ── Switch ──

    async def switch_mode(
        self,
        project_id: str,
        target_mode: SyncMode,
        preserve_existing_data: bool = True,
        create_backup: bool = True,
        record_type: str | None = None,
    ) -> MigrationResult:
        old_mode = await self.store.get_mode(project_id)
        result = MigrationResult(success=False, old_mode=old_mode, new_mode=target_mode)

        if create_backup:
            try:
                snapshot = await self.create_backup(
                    project_id, reason=f"switch {old_mode.value} -> {target_mode.value}"
                )
            except MigrationError as e:
                result.error_message = e.public_message
                logger.error(
                    "Mode switch aborted: backup failed", extra={"project_id": project_id}
                )
                return result
            result.backup_name = snapshot.name

        if old_mode == target_mode:
            result.success = True
            result.warnings.append(f"Project is already in {target_mode.value} mode")
            return result

        try:
            if target_mode == SyncMode.INDIVIDUAL_RECORDS:
                result.records_converted = await self.convert_daily_to_individual(
                    project_id,
                    record_type=record_type,
                    preserve_existing_data=preserve_existing_data,
                    commit=False,
                )
            else:
                converted, warnings = await self.convert_individual_to_daily(
                    project_id, preserve_existing_data=preserve_existing_data, commit=False
                )
                result.records_converted = converted
                result.warnings.extend(warnings)

            await self.store.set_mode(project_id, target_mode, commit=False)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            result.records_converted = 0
            result.error_message = public_message(e)
            logger.error(
                f"Mode switch failed ({type(e).__name__}); backup {result.backup_name} kept",
                extra={"project_id": project_id},
            )
            return result

        result.success = True
        logger.info(
            f"Switched {old_mode.value} → {target_mode.value}, "
            f"{result.records_converted} records converted",
            extra={"project_id": project_id},
        )
        return result
