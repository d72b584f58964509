"""GrowthSync — Sync Configuration, Credentials & History Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field as PydanticField, TypeAdapter
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    """Persisted status visible to UI observers."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class SyncTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


# ─────────────────────────────────────────────
# SOURCE CONFIGS: tagged variants, dispatched on ``kind``
# ─────────────────────────────────────────────


class FieldMapping(BaseModel):
    """How raw source fields become canonical metrics / record attributes."""

    fields: Dict[str, str] = PydanticField(default_factory=dict)
    """Raw field (column letter, API field) -> metric key or custom name. Empty = identity."""
    unique_id_field: Optional[str] = None
    amount_field: Optional[str] = None
    status_field: Optional[str] = None
    record_type_field: Optional[str] = None
    record_type: str = "sale"

    @property
    def reserved_fields(self) -> set[str]:
        return {
            f
            for f in (
                self.unique_id_field,
                self.amount_field,
                self.status_field,
                self.record_type_field,
            )
            if f
        }


class SourceConfigBase(BaseModel):
    """Shared part of every source config."""

    credentials_ref: str = ""
    is_active: bool = True
    field_mappings: Dict[str, str] = PydanticField(default_factory=dict)
    unique_id_field: Optional[str] = None
    amount_field: Optional[str] = None
    status_field: Optional[str] = None
    record_type: str = "sale"
    auto_aggregate: bool = False
    """In individual-records mode, also roll records up into daily aggregates."""

    supports_individual_records: ClassVar[bool] = True

    def mapping(self) -> FieldMapping:
        return FieldMapping(
            fields=dict(self.field_mappings),
            unique_id_field=self.unique_id_field,
            amount_field=self.amount_field,
            status_field=self.status_field,
            record_type=self.record_type,
        )

    def cache_scope(self) -> str:
        raise NotImplementedError


class SheetSourceConfig(SourceConfigBase):
    """Spreadsheet tabs with a date column and lettered metric columns."""

    kind: Literal["sheet"] = "sheet"
    spreadsheet_id: str
    sheet_names: List[str] = PydanticField(default_factory=lambda: ["Sheet1"])
    date_column: str = "A"
    header_rows: int = 1

    def cache_scope(self) -> str:
        return f"{self.spreadsheet_id}/{','.join(self.sheet_names)}"


class AdsSourceConfig(SourceConfigBase):
    """Ads account insights, one row per day (per campaign at campaign level)."""

    kind: Literal["ads"] = "ads"
    ad_account_id: str
    level: Literal["account", "campaign", "adset", "ad"] = "account"

    supports_individual_records: ClassVar[bool] = False

    def cache_scope(self) -> str:
        return f"{self.ad_account_id}/{self.level}"


class CrmSourceConfig(SourceConfigBase):
    """CRM location: appointments, opportunities and paid invoices."""

    kind: Literal["crm"] = "crm"
    location_id: str
    include: List[Literal["appointments", "opportunities", "invoices"]] = PydanticField(
        default_factory=lambda: ["appointments", "opportunities", "invoices"]
    )
    unique_id_field: Optional[str] = "id"
    amount_field: Optional[str] = "amount"
    status_field: Optional[str] = "status"

    def mapping(self) -> FieldMapping:
        mapping = super().mapping()
        mapping.record_type_field = "record_type"
        return mapping

    def cache_scope(self) -> str:
        return f"{self.location_id}/{','.join(self.include)}"


SourceConfig = Annotated[
    Union[SheetSourceConfig, AdsSourceConfig, CrmSourceConfig],
    PydanticField(discriminator="kind"),
]

_source_config_adapter: TypeAdapter = TypeAdapter(SourceConfig)


def parse_source_config(data: Dict[str, Any]) -> SheetSourceConfig | AdsSourceConfig | CrmSourceConfig:
    """Validate a dict into the matching config variant (raises pydantic.ValidationError)."""
    return _source_config_adapter.validate_python(data)


# ─────────────────────────────────────────────
# DATABASE MODELS
# ─────────────────────────────────────────────


class SyncConfig(SQLModel, table=True):
    """Per-project, per-source connection + mapping + cadence.

    At most one active row per (project_id, source).
    """

    __tablename__ = "sync_configs"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    source: str = Field(index=True, description="sheet | ads | crm")
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_active: bool = Field(default=True, index=True)
    sync_frequency_minutes: int = Field(default=0, description="0 = manual only")
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING)
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    next_sync_at: Optional[datetime] = None
    consecutive_failures: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def source_config(self) -> SheetSourceConfig | AdsSourceConfig | CrmSourceConfig:
        return parse_source_config({**self.config, "kind": self.source})


class SourceCredential(SQLModel, table=True):
    """OAuth / API token for one connection. Never logged."""

    __tablename__ = "source_credentials"

    credentials_ref: str = Field(primary_key=True)
    provider: str = Field(default="", description="google | meta | crm")
    access_token: str = ""
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class SyncRun(SQLModel, table=True):
    """Audit history of one sync invocation across all of a project's sources."""

    __tablename__ = "sync_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True)
    trigger: SyncTrigger = Field(default=SyncTrigger.MANUAL)
    status: SyncStatus = Field(default=SyncStatus.IN_PROGRESS)
    start_date: str = ""
    end_date: str = ""
    rows_inserted: int = 0
    rows_updated: int = 0
    source_results: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON)
    )
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
