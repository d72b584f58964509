"""GrowthSync — Sync config and sync history persistence."""

from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Session, or_, select

from growthsync.core.logging import get_logger
from growthsync.models.sync_models import (
    AdsSourceConfig,
    CrmSourceConfig,
    SheetSourceConfig,
    SyncConfig,
    SyncRun,
)

logger = get_logger("storage.configs")


class SyncConfigStore:
    """CRUD for ``SyncConfig`` rows and ``SyncRun`` history."""

    def __init__(self, session: Session):
        self.session = session

    def save_config(
        self,
        project_id: str,
        source_config: SheetSourceConfig | AdsSourceConfig | CrmSourceConfig,
        sync_frequency_minutes: int = 0,
    ) -> SyncConfig:
        """Store a new active config, deactivating the previous one for the same source."""
        previous = self.session.exec(
            select(SyncConfig).where(
                SyncConfig.project_id == project_id,
                SyncConfig.source == source_config.kind,
                SyncConfig.is_active == True,  # noqa: E712
            )
        ).all()
        now = datetime.now(timezone.utc)
        for old in previous:
            old.is_active = False
            old.updated_at = now
            self.session.add(old)

        config = SyncConfig(
            project_id=project_id,
            source=source_config.kind,
            config=source_config.model_dump(mode="json", exclude={"kind"}),
            is_active=source_config.is_active,
            sync_frequency_minutes=sync_frequency_minutes,
            next_sync_at=now if sync_frequency_minutes > 0 else None,
        )
        self.session.add(config)
        self.session.commit()
        self.session.refresh(config)
        logger.info(
            f"Saved {config.source} config (deactivated {len(previous)} previous)",
            extra={"project_id": project_id, "source": config.source},
        )
        return config

    def get(self, config_id: int) -> Optional[SyncConfig]:
        return self.session.get(SyncConfig, config_id)

    def active_configs(self, project_id: str) -> List[SyncConfig]:
        return list(
            self.session.exec(
                select(SyncConfig)
                .where(
                    SyncConfig.project_id == project_id,
                    SyncConfig.is_active == True,  # noqa: E712
                )
                .order_by(SyncConfig.source)
            ).all()
        )

    def due_configs(self, now: datetime) -> List[SyncConfig]:
        """Active configs with a cadence whose next run time has passed."""
        return list(
            self.session.exec(
                select(SyncConfig).where(
                    SyncConfig.is_active == True,  # noqa: E712
                    SyncConfig.sync_frequency_minutes > 0,
                    or_(SyncConfig.next_sync_at == None, SyncConfig.next_sync_at <= now),  # noqa: E711
                )
            ).all()
        )

    # ── History ──

    def add_run(self, run: SyncRun) -> SyncRun:
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    def list_runs(self, project_id: str, limit: int = 20) -> List[SyncRun]:
        return list(
            self.session.exec(
                select(SyncRun)
                .where(SyncRun.project_id == project_id)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            ).all()
        )
