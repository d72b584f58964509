"""GrowthSync — Sync API Routes."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from growthsync.api.deps import get_cache, get_orchestrator
from growthsync.core.cache import TTLCache
from growthsync.core.errors import ConfigError
from growthsync.core.logging import get_logger
from growthsync.database import get_session
from growthsync.models.sync_models import SyncStatus, SyncTrigger, parse_source_config
from growthsync.storage.config_store import SyncConfigStore
from growthsync.sync.dates import resolve_dates
from growthsync.sync.orchestrator import SyncOrchestrator, SyncResult

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])


# ── Request / Response Models ──


class SyncRequest(BaseModel):
    """Request body for POST /projects/{project_id}/sync."""

    date_range: Optional[str] = None
    """One of: "today", "yesterday", "last_7d", "last_14d", "last_30d", "last_90d", "this_month"."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"date_range": "last_30d"},
                {"start_date": "2024-01-01", "end_date": "2024-03-05"},
            ]
        }
    }


class SaveConfigRequest(BaseModel):
    """A source config (``kind`` selects sheet / ads / crm) plus its cadence."""

    config: Dict[str, Any]
    sync_frequency_minutes: int = 0


class ConfigStatus(BaseModel):
    id: int
    source: str
    is_active: bool
    sync_status: SyncStatus
    sync_frequency_minutes: int
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    next_sync_at: Optional[datetime] = None


class SyncRunOut(BaseModel):
    id: int
    trigger: SyncTrigger
    status: SyncStatus
    start_date: str
    end_date: str
    rows_inserted: int
    rows_updated: int
    source_results: List[Dict[str, Any]]
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


def _config_status(config) -> ConfigStatus:
    return ConfigStatus(
        id=config.id,
        source=config.source,
        is_active=config.is_active,
        sync_status=config.sync_status,
        sync_frequency_minutes=config.sync_frequency_minutes,
        last_sync_at=config.last_sync_at,
        last_sync_error=config.last_sync_error,
        next_sync_at=config.next_sync_at,
    )


# ── Endpoints ──


@router.post("/projects/{project_id}/sync", response_model=SyncResult)
async def trigger_sync(
    project_id: str,
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Manual sync of every active source. Always refetches (cache cleared for these sources)."""
    start, end = resolve_dates(request.date_range, request.start_date, request.end_date)
    logger.info(f"Manual sync requested: {start} → {end}", extra={"project_id": project_id})
    return await orchestrator.sync_project(project_id, start, end, trigger=SyncTrigger.MANUAL)


@router.get("/projects/{project_id}/sync/status", response_model=List[ConfigStatus])
async def sync_status(project_id: str, session: Session = Depends(get_session)):
    """Live per-source status (``in_progress`` while a sync runs)."""
    return [_config_status(c) for c in SyncConfigStore(session).active_configs(project_id)]


@router.get("/projects/{project_id}/sync/history", response_model=List[SyncRunOut])
async def sync_history(
    project_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    session: Session = Depends(get_session),
):
    runs = SyncConfigStore(session).list_runs(project_id, limit)
    return [SyncRunOut.model_validate(r, from_attributes=True) for r in runs]


@router.post("/projects/{project_id}/configs", response_model=ConfigStatus)
async def save_config(
    project_id: str,
    request: SaveConfigRequest,
    session: Session = Depends(get_session),
):
    """Store a source config; the previous active config for that source is deactivated."""
    try:
        source_config = parse_source_config(request.config)
    except ValueError as e:
        raise ConfigError(f"Invalid source config: {e}") from e
    config = SyncConfigStore(session).save_config(
        project_id, source_config, request.sync_frequency_minutes
    )
    return _config_status(config)


# ── Cache ──


@router.get("/cache/stats", tags=["Cache"])
async def cache_stats(cache: TTLCache = Depends(get_cache)):
    return cache.stats()


@router.delete("/cache", tags=["Cache"])
async def clear_cache(cache: TTLCache = Depends(get_cache)):
    cleared = len(cache)
    cache.clear_all()
    return {"status": "success", "cleared": cleared}
