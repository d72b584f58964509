"""GrowthSync — Metrics Store.

The only write path for ``DailyMetricRecord`` and ``IndividualRecord``.
Every write is an upsert on the table's unique key: select the existing row,
overwrite it in place or add a new one. Replaying a batch leaves the table
unchanged.

Methods are coroutines so callers treat storage as a suspension point; the
underlying session is the synchronous SQLModel one.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from growthsync.core.logging import get_logger
from growthsync.models.metric_models import (
    METRIC_COLUMNS,
    DailyMetricRecord,
    IndividualRecord,
    ProjectSyncMode,
    SyncMode,
)

logger = get_logger("storage.metrics")

UserIdProvider = Callable[[], Optional[str]]


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(self.inserted + other.inserted, self.updated + other.updated)


class MetricsStore:
    """Row-level upsert / query access to a project's stored metrics."""

    def __init__(self, session: Session, user_id_provider: UserIdProvider | None = None):
        self.session = session
        self._user_id = user_id_provider or (lambda: None)

    # ── Transactions ──

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ── Daily aggregates ──

    async def upsert_daily(
        self, records: List[DailyMetricRecord], commit: bool = True
    ) -> UpsertResult:
        """Upsert on (project_id, date, source). Later records in the batch win."""
        result = UpsertResult()
        now = datetime.now(timezone.utc)
        user_id = self._user_id()

        for record in records:
            existing = self.session.exec(
                select(DailyMetricRecord).where(
                    DailyMetricRecord.project_id == record.project_id,
                    DailyMetricRecord.date == record.date,
                    DailyMetricRecord.source == record.source,
                )
            ).first()

            if existing:
                for column in METRIC_COLUMNS:
                    setattr(existing, column, getattr(record, column))
                existing.extra_data = dict(record.extra_data or {})
                existing.user_id = record.user_id or user_id or existing.user_id
                existing.updated_at = now
                self.session.add(existing)
                result.updated += 1
            else:
                record.user_id = record.user_id or user_id
                self.session.add(record)
                result.inserted += 1

        if commit:
            self.session.commit()
        logger.info(
            f"Upserted {result.total} daily rows "
            f"({result.inserted} new, {result.updated} updated)"
        )
        return result

    async def query_daily(
        self,
        project_id: str,
        start: date | None = None,
        end: date | None = None,
        source: str | None = None,
    ) -> List[DailyMetricRecord]:
        stmt = select(DailyMetricRecord).where(DailyMetricRecord.project_id == project_id)
        if start is not None:
            stmt = stmt.where(DailyMetricRecord.date >= start)
        if end is not None:
            stmt = stmt.where(DailyMetricRecord.date <= end)
        if source is not None:
            stmt = stmt.where(DailyMetricRecord.source == source)
        stmt = stmt.order_by(DailyMetricRecord.date, DailyMetricRecord.source)
        return list(self.session.exec(stmt).all())

    async def delete_daily(
        self, project_id: str, source: str | None = None, commit: bool = True
    ) -> int:
        rows = await self.query_daily(project_id, source=source)
        for row in rows:
            self.session.delete(row)
        if commit:
            self.session.commit()
        return len(rows)

    async def count_daily(self, project_id: str) -> int:
        return self.session.exec(
            select(func.count())
            .select_from(DailyMetricRecord)
            .where(DailyMetricRecord.project_id == project_id)
        ).one()

    # ── Individual records ──

    async def upsert_individual(
        self, records: List[IndividualRecord], commit: bool = True
    ) -> UpsertResult:
        """Upsert on (project_id, record_id)."""
        result = UpsertResult()
        now = datetime.now(timezone.utc)
        user_id = self._user_id()

        for record in records:
            existing = self.session.exec(
                select(IndividualRecord).where(
                    IndividualRecord.project_id == record.project_id,
                    IndividualRecord.record_id == record.record_id,
                )
            ).first()

            if existing:
                existing.date = record.date
                existing.source = record.source
                existing.record_type = record.record_type
                existing.amount = record.amount
                existing.status = record.status
                existing.record_data = dict(record.record_data or {})
                existing.user_id = record.user_id or user_id or existing.user_id
                existing.updated_at = now
                self.session.add(existing)
                result.updated += 1
            else:
                record.user_id = record.user_id or user_id
                self.session.add(record)
                result.inserted += 1

        if commit:
            self.session.commit()
        logger.info(
            f"Upserted {result.total} individual records "
            f"({result.inserted} new, {result.updated} updated)"
        )
        return result

    async def query_individual(
        self,
        project_id: str,
        start: date | None = None,
        end: date | None = None,
        source: str | None = None,
        record_type: str | None = None,
    ) -> List[IndividualRecord]:
        stmt = select(IndividualRecord).where(IndividualRecord.project_id == project_id)
        if start is not None:
            stmt = stmt.where(IndividualRecord.date >= start)
        if end is not None:
            stmt = stmt.where(IndividualRecord.date <= end)
        if source is not None:
            stmt = stmt.where(IndividualRecord.source == source)
        if record_type is not None:
            stmt = stmt.where(IndividualRecord.record_type == record_type)
        stmt = stmt.order_by(IndividualRecord.date, IndividualRecord.record_id)
        return list(self.session.exec(stmt).all())

    async def delete_individual(
        self, project_id: str, source: str | None = None, commit: bool = True
    ) -> int:
        rows = await self.query_individual(project_id, source=source)
        for row in rows:
            self.session.delete(row)
        if commit:
            self.session.commit()
        return len(rows)

    async def count_individual(self, project_id: str) -> int:
        return self.session.exec(
            select(func.count())
            .select_from(IndividualRecord)
            .where(IndividualRecord.project_id == project_id)
        ).one()

    async def record_types(self, project_id: str) -> Set[str]:
        rows = self.session.exec(
            select(IndividualRecord.record_type)
            .where(IndividualRecord.project_id == project_id)
            .distinct()
        ).all()
        return set(rows)

    async def date_bounds(self, project_id: str) -> Tuple[Optional[date], Optional[date]]:
        """Earliest and latest date across both tables."""
        bounds: List[date] = []
        for model in (DailyMetricRecord, IndividualRecord):
            low, high = self.session.exec(
                select(func.min(model.date), func.max(model.date)).where(
                    model.project_id == project_id
                )
            ).one()
            bounds.extend(d for d in (low, high) if d is not None)
        if not bounds:
            return None, None
        return min(bounds), max(bounds)

    # ── Storage mode ──

    async def get_mode(self, project_id: str) -> SyncMode:
        row = self.session.get(ProjectSyncMode, project_id)
        return row.sync_mode if row else SyncMode.DAILY_AGGREGATE

    async def set_mode(self, project_id: str, mode: SyncMode, commit: bool = True) -> None:
        row = self.session.get(ProjectSyncMode, project_id)
        if row is None:
            row = ProjectSyncMode(project_id=project_id, sync_mode=mode)
        else:
            row.sync_mode = mode
            row.updated_at = datetime.now(timezone.utc)
        self.session.add(row)
        if commit:
            self.session.commit()
