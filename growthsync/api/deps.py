"""GrowthSync — Shared API dependencies."""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlmodel import Session

from growthsync.connectors.registry import close_adapters
from growthsync.core.cache import TTLCache
from growthsync.database import get_session
from growthsync.migration.manager import MigrationManager
from growthsync.sync.chunker import RangeChunker
from growthsync.sync.orchestrator import SyncOrchestrator


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Opaque identity from the auth layer in front of this service."""
    return x_user_id


def get_cache(request: Request) -> TTLCache:
    return request.app.state.cache


async def get_orchestrator(
    request: Request,
    session: Session = Depends(get_session),
    cache: TTLCache = Depends(get_cache),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    adapters = request.app.state.adapter_factory(session)
    try:
        yield SyncOrchestrator(
            session, RangeChunker(cache, adapters), user_id_provider=lambda: user_id
        )
    finally:
        await close_adapters(adapters)


def get_migration_manager(
    session: Session = Depends(get_session),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> MigrationManager:
    return MigrationManager(session, user_id_provider=lambda: user_id)
