"""GrowthSync — Stored Metric Models.

Two storage modes share this module:

* ``DailyMetricRecord``: one row per (project, date, source). Every connector
  normalizes into these columns; anything without a column lands in
  ``extra_data``.
* ``IndividualRecord``: one row per business event (sale, lead, appointment)
  keyed by the caller-supplied ``record_id``.

Unique constraints are the upsert keys; re-running a sync overwrites, never
duplicates.
"""

from datetime import date as Date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, UniqueConstraint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncMode(str, Enum):
    """How a project's metrics are stored."""

    DAILY_AGGREGATE = "daily_aggregate"
    INDIVIDUAL_RECORDS = "individual_records"


class DailyMetricRecord(SQLModel, table=True):
    """Per-day metrics for one project from one source."""

    __tablename__ = "project_daily_metrics"
    __table_args__ = (
        UniqueConstraint("project_id", "date", "source", name="uq_daily_metric"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    date: Date = Field(index=True)
    source: str = Field(index=True, description="sheet | ads | crm | converted")
    user_id: Optional[str] = Field(default=None)

    # Volume
    impressions: Optional[int] = None
    reach: Optional[int] = None
    clicks: Optional[int] = None
    outbound_clicks: Optional[int] = None
    conversions: Optional[int] = None
    # Money
    spend: Optional[float] = None
    revenue: Optional[float] = None
    deal_value: Optional[float] = None
    won_value: Optional[float] = None
    daily_budget: Optional[float] = None
    # CRM pipeline
    appointments_total: Optional[int] = None
    appointments_scheduled: Optional[int] = None
    appointments_completed: Optional[int] = None
    appointments_no_show: Optional[int] = None
    appointments_cancelled: Optional[int] = None
    deals_total: Optional[int] = None
    deals_won: Optional[int] = None
    deals_lost: Optional[int] = None
    deals_open: Optional[int] = None
    # Rates
    ctr: Optional[float] = None
    cpc: Optional[float] = None
    cpm: Optional[float] = None
    frequency: Optional[float] = None
    conversion_rate: Optional[float] = None
    cost_per_conversion: Optional[float] = None
    roas: Optional[float] = None

    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def metric_values(self) -> Dict[str, Any]:
        """Non-null canonical metric columns."""
        return {
            name: getattr(self, name)
            for name in METRIC_COLUMNS
            if getattr(self, name) is not None
        }


class IndividualRecord(SQLModel, table=True):
    """One externally identified business event."""

    __tablename__ = "project_individual_records"
    __table_args__ = (
        UniqueConstraint("project_id", "record_id", name="uq_individual_record"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    record_id: str = Field(index=True, description="Caller-supplied unique id")
    date: Date = Field(index=True)
    source: str = Field(index=True)
    record_type: str = Field(default="sale", description="sale | lead | call | ...")
    amount: Optional[float] = None
    status: Optional[str] = None
    user_id: Optional[str] = Field(default=None)
    record_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ProjectSyncMode(SQLModel, table=True):
    """Current storage mode of a project. Missing row means daily aggregates."""

    __tablename__ = "project_sync_modes"

    project_id: str = Field(primary_key=True)
    sync_mode: SyncMode = Field(default=SyncMode.DAILY_AGGREGATE)
    updated_at: datetime = Field(default_factory=_utcnow)


# Column names that hold canonical metrics (everything except keys/bookkeeping)
METRIC_COLUMNS = tuple(
    name
    for name in DailyMetricRecord.model_fields
    if name
    not in {
        "id",
        "project_id",
        "date",
        "source",
        "user_id",
        "extra_data",
        "created_at",
        "updated_at",
    }
)
