"""GrowthSync — Mode Migration Models."""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from growthsync.models.metric_models import SyncMode


# ─────────────────────────────────────────────
# DATABASE MODEL: immutable snapshot taken before a mode switch
# ─────────────────────────────────────────────


class BackupSnapshot(SQLModel, table=True):
    """Point-in-time copy of a project's metric rows. Written once, only read for restore."""

    __tablename__ = "backup_snapshots"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    project_id: str = Field(index=True)
    sync_mode: SyncMode = Field(description="Mode in effect when the snapshot was taken")
    reason: str = Field(default="")
    row_count: int = 0
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    """{"daily": [...], "individual": [...]} as JSON-safe dicts."""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS
# ─────────────────────────────────────────────


class MigrationResult(BaseModel):
    """Outcome of switch_mode."""

    success: bool
    old_mode: Optional[SyncMode] = None
    new_mode: SyncMode
    backup_name: Optional[str] = None
    records_converted: int = 0
    warnings: List[str] = []
    error_message: Optional[str] = None


class ModeSwitchValidation(BaseModel):
    """Read-only pre-flight check. ``can_switch`` is always True; warnings only flag."""

    can_switch: bool = True
    target_mode: SyncMode
    warnings: List[str] = []
    recommendations: List[str] = []


class ProjectDataStats(BaseModel):
    daily_metrics_count: int = 0
    individual_records_count: int = 0
    earliest_date: Optional[date] = None
    latest_date: Optional[date] = None
    record_types: List[str] = []
    current_mode: SyncMode = SyncMode.DAILY_AGGREGATE


class BackupInfo(BaseModel):
    name: str
    project_id: str
    sync_mode: SyncMode
    row_count: int
    reason: str
    created_at: datetime


class RestoreResult(BaseModel):
    success: bool
    restored_records: int = 0
    restored_mode: Optional[SyncMode] = None
    error_message: Optional[str] = None
