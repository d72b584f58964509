"""GrowthSync — Scheduler Jobs.

APScheduler interval job that polls for source configs whose
``next_sync_at`` has passed and syncs them with the ``scheduled`` trigger.
"""

from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session

from growthsync.config import settings
from growthsync.connectors.base import SourceAdapter
from growthsync.connectors.registry import close_adapters, default_adapter_factory
from growthsync.core.cache import TTLCache
from growthsync.database import engine
from growthsync.core.logging import get_logger
from growthsync.models.sync_models import SyncConfig, SyncTrigger
from growthsync.storage.config_store import SyncConfigStore
from growthsync.sync.chunker import RangeChunker
from growthsync.sync.dates import resolve_dates
from growthsync.sync.orchestrator import SyncOrchestrator, SyncResult

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()

AdapterFactory = Callable[[Session], Dict[str, SourceAdapter]]


async def run_due_syncs(
    session: Session,
    cache: TTLCache,
    adapter_factory: AdapterFactory = default_adapter_factory,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> List[SyncResult]:
    """Sync every due config, one sync pass per project."""
    now = now or datetime.now(timezone.utc)
    due = SyncConfigStore(session).due_configs(now)
    if not due:
        return []

    by_project: Dict[str, List[SyncConfig]] = defaultdict(list)
    for config in due:
        by_project[config.project_id].append(config)

    start, end = resolve_dates(today=today)
    adapters = adapter_factory(session)
    results: List[SyncResult] = []
    try:
        orchestrator = SyncOrchestrator(session, RangeChunker(cache, adapters))
        for project_id, configs in by_project.items():
            results.append(
                await orchestrator.sync_project(
                    project_id, start, end, trigger=SyncTrigger.SCHEDULED, configs=configs
                )
            )
    finally:
        await close_adapters(adapters)
    return results


async def scheduled_sync_job(cache: TTLCache):
    """Poll job: run all due syncs in a fresh session."""
    try:
        with Session(engine) as session:
            results = await run_due_syncs(session, cache)
        if results:
            logger.info(f"Scheduled sync ran for {len(results)} projects")
    except Exception as e:
        logger.error(f"Scheduled sync poll failed ({type(e).__name__})")


def start_scheduler(cache: TTLCache):
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        scheduled_sync_job,
        "interval",
        minutes=settings.scheduler_poll_minutes,
        args=[cache],
        id="sync_poll",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Polling every {settings.scheduler_poll_minutes} min")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
