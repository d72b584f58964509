"""GrowthSync — Sync Orchestrator.

Runs one sync pass for a project:

  for each active source config (sequentially):
      Fetching → Normalizing → Upserting → {success | partial | error}

Each source is isolated: its failure is recorded against that source's config
and the sync history, and the remaining sources still sync. Manual and
scheduled triggers share this path; only the recorded trigger differs.
"""

import time
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import pydantic
from pydantic import BaseModel
from sqlmodel import Session

from growthsync.config import settings
from growthsync.core.errors import (
    ConfigError,
    RateLimitError,
    SyncError,
    ValidationError,
    public_message,
)
from growthsync.core.logging import get_logger
from growthsync.models.metric_models import SyncMode
from growthsync.models.sync_models import SyncConfig, SyncRun, SyncStatus, SyncTrigger
from growthsync.storage.config_store import SyncConfigStore
from growthsync.storage.metrics_store import MetricsStore, UserIdProvider
from growthsync.sync.chunker import RangeChunker
from growthsync.sync.normalizer import (
    aggregate_individual_records,
    daily_records_from_aggregate,
    normalize_individual,
)
from growthsync.sync.status import LoggingNotifier, StatusEvent, StatusNotifier

logger = get_logger("sync.orchestrator")


class SourceResult(BaseModel):
    source: str
    config_id: Optional[int] = None
    status: SyncStatus
    mode: SyncMode = SyncMode.DAILY_AGGREGATE
    inserted: int = 0
    updated: int = 0
    aggregated_days: int = 0
    invalid_rows: List[int] = []
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_after: Optional[float] = None
    duration_ms: int = 0


class SyncResult(BaseModel):
    sync_id: Optional[int] = None
    project_id: str
    trigger: SyncTrigger
    status: SyncStatus
    start_date: date
    end_date: date
    sources: List[SourceResult] = []

    @property
    def rows_inserted(self) -> int:
        return sum(s.inserted for s in self.sources)

    @property
    def rows_updated(self) -> int:
        return sum(s.updated for s in self.sources)

    def source(self, name: str) -> Optional[SourceResult]:
        return next((s for s in self.sources if s.source == name), None)


def overall_status(results: List[SourceResult]) -> SyncStatus:
    """All clean → success, every source failed → error, anything else → partial."""
    if not results or all(r.status == SyncStatus.SUCCESS for r in results):
        return SyncStatus.SUCCESS
    if all(r.status == SyncStatus.ERROR for r in results):
        return SyncStatus.ERROR
    return SyncStatus.PARTIAL


def next_run_at(
    config: SyncConfig, now: datetime, retry_after: Optional[float] = None
) -> Optional[datetime]:
    """Next scheduled run; failures double the cadence up to the backoff cap.

    A source that asked us to wait (``Retry-After``) is never retried sooner.
    """
    if config.sync_frequency_minutes <= 0:
        return None
    minutes = config.sync_frequency_minutes
    if config.consecutive_failures:
        minutes = min(
            minutes * 2 ** config.consecutive_failures, settings.max_backoff_minutes
        )
    scheduled = now + timedelta(minutes=minutes)
    if retry_after:
        scheduled = max(scheduled, now + timedelta(seconds=retry_after))
    return scheduled


class SyncOrchestrator:
    """Fetch → normalize → upsert for every configured source of a project."""

    def __init__(
        self,
        session: Session,
        chunker: RangeChunker,
        notifier: StatusNotifier | None = None,
        user_id_provider: UserIdProvider | None = None,
        max_chunk_days: int | None = None,
    ):
        self.session = session
        self.chunker = chunker
        self.notifier = notifier or LoggingNotifier()
        self.store = MetricsStore(session, user_id_provider)
        self.configs = SyncConfigStore(session)
        self.user_id_provider = user_id_provider or (lambda: None)
        self.max_chunk_days = max_chunk_days

    def _emit(self, config: SyncConfig, status: SyncStatus, stage: str, message: str = "") -> None:
        self.notifier.notify(
            StatusEvent(
                project_id=config.project_id,
                source=config.source,
                status=status,
                stage=stage,
                message=message,
            )
        )

    # ── Whole project ──

    async def sync_project(
        self,
        project_id: str,
        start: date,
        end: date,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        configs: List[SyncConfig] | None = None,
    ) -> SyncResult:
        """Sync every active source of the project (or just ``configs``)."""
        if end < start:
            raise ConfigError(f"Invalid date range: {start} is after {end}")

        if configs is None:
            configs = self.configs.active_configs(project_id)
        run = self.configs.add_run(
            SyncRun(
                project_id=project_id,
                trigger=trigger,
                status=SyncStatus.IN_PROGRESS,
                start_date=start.isoformat(),
                end_date=end.isoformat(),
            )
        )
        logger.info(
            f"Sync started for {len(configs)} sources ({start} → {end}, {trigger.value})",
            extra={"project_id": project_id, "sync_id": run.id},
        )

        if trigger == SyncTrigger.MANUAL:
            self._invalidate_cache(configs)

        mode = await self.store.get_mode(project_id)
        results: List[SourceResult] = []
        for config in configs:
            results.append(await self.sync_source(config, start, end, mode=mode))

        status = overall_status(results)
        failed = [r for r in results if r.error]
        run.status = status
        run.rows_inserted = sum(r.inserted for r in results)
        run.rows_updated = sum(r.updated for r in results)
        run.source_results = [r.model_dump(mode="json") for r in results]
        run.error_message = (
            "; ".join(f"{r.source}: {r.error}" for r in failed)[:1000] if failed else None
        )
        run.completed_at = datetime.now(timezone.utc)
        self.session.add(run)
        self.session.commit()

        logger.info(
            f"Sync finished: {run.rows_inserted} inserted, {run.rows_updated} updated",
            extra={"project_id": project_id, "sync_id": run.id, "status": status.value},
        )
        return SyncResult(
            sync_id=run.id,
            project_id=project_id,
            trigger=trigger,
            status=status,
            start_date=start,
            end_date=end,
            sources=results,
        )

    def _invalidate_cache(self, configs: List[SyncConfig]) -> None:
        """A manual sync always refetches."""
        for config in configs:
            try:
                self.chunker.invalidate(config.source_config())
            except pydantic.ValidationError:
                # Reported when the source itself syncs
                continue

    # ── Single source ──

    async def sync_source(
        self,
        config: SyncConfig,
        start: date,
        end: date,
        mode: SyncMode | None = None,
    ) -> SourceResult:
        """Sync one source config. Never raises; failures land in the result."""
        started = time.monotonic()
        mode = mode or await self.store.get_mode(config.project_id)
        result = SourceResult(
            source=config.source, config_id=config.id, status=SyncStatus.IN_PROGRESS, mode=mode
        )

        # Live state for observers before any remote call
        config.sync_status = SyncStatus.IN_PROGRESS
        config.updated_at = datetime.now(timezone.utc)
        self.session.add(config)
        self.session.commit()
        self._emit(config, SyncStatus.IN_PROGRESS, "fetching")

        try:
            try:
                source_config = config.source_config()
            except pydantic.ValidationError as e:
                raise ConfigError(
                    f"Invalid {config.source} configuration ({e.error_count()} problems)"
                ) from e

            if mode == SyncMode.INDIVIDUAL_RECORDS and source_config.supports_individual_records:
                await self._sync_individual(config, source_config, start, end, result)
            else:
                result.mode = SyncMode.DAILY_AGGREGATE
                await self._sync_daily(config, source_config, start, end, result)

            result.status = SyncStatus.PARTIAL if result.error else SyncStatus.SUCCESS
            config.consecutive_failures = 0
        except Exception as exc:
            self.session.rollback()
            result.status = SyncStatus.ERROR
            result.error = public_message(exc)
            result.error_code = exc.code if isinstance(exc, SyncError) else "UNEXPECTED"
            if isinstance(exc, RateLimitError):
                result.retry_after = exc.retry_after
            config.consecutive_failures = (config.consecutive_failures or 0) + 1
            logger.error(
                f"Source sync failed: {result.error}",
                extra={"project_id": config.project_id, "source": config.source},
            )

        now = datetime.now(timezone.utc)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        config.sync_status = result.status
        config.last_sync_error = result.error
        config.last_sync_at = now
        config.next_sync_at = next_run_at(config, now, result.retry_after)
        config.updated_at = now
        self.session.add(config)
        self.session.commit()

        self._emit(
            config,
            result.status,
            "done",
            result.error or f"{result.inserted} inserted, {result.updated} updated",
        )
        logger.info(
            f"Source sync {result.status.value}",
            extra={
                "project_id": config.project_id,
                "source": config.source,
                "status": result.status.value,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _sync_daily(self, config, source_config, start, end, result: SourceResult) -> None:
        agg = await self.chunker.fetch_chunked(source_config, start, end, self.max_chunk_days)

        self._emit(config, SyncStatus.IN_PROGRESS, "normalizing")
        records = daily_records_from_aggregate(
            agg, config.project_id, config.source, self.user_id_provider()
        )

        self._emit(config, SyncStatus.IN_PROGRESS, "upserting")
        upsert = await self.store.upsert_daily(records)
        result.inserted, result.updated = upsert.inserted, upsert.updated

        error = agg.issues.to_error()
        if error is not None:
            logger.warning(
                error.message,
                extra={"project_id": config.project_id, "source": config.source},
            )
            self._report_invalid(result, error)

    async def _sync_individual(
        self, config, source_config, start, end, result: SourceResult
    ) -> None:
        raw = await self.chunker.fetch_raw_chunked(
            source_config, start, end, self.max_chunk_days
        )

        self._emit(config, SyncStatus.IN_PROGRESS, "normalizing")
        records, error = normalize_individual(
            raw,
            source_config.mapping(),
            config.project_id,
            config.source,
            self.user_id_provider(),
            strict=False,
        )

        self._emit(config, SyncStatus.IN_PROGRESS, "upserting")
        upsert = await self.store.upsert_individual(records)
        result.inserted, result.updated = upsert.inserted, upsert.updated

        if error is not None:
            self._report_invalid(result, error)

        if source_config.auto_aggregate:
            stored = await self.store.query_individual(
                config.project_id, start, end, source=config.source
            )
            daily, _ = aggregate_individual_records(
                stored, config.project_id, self.user_id_provider()
            )
            await self.store.upsert_daily(daily)
            result.aggregated_days = len(daily)

    @staticmethod
    def _report_invalid(result: SourceResult, error: ValidationError) -> None:
        """Readable rows were stored; the rest make the source partial."""
        result.invalid_rows = error.row_indices
        result.error = error.public_message
        result.error_code = error.code
