"""Shared pytest fixtures for the GrowthSync tests."""

from datetime import date
from typing import Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from growthsync.config import CacheConfig
from growthsync.connectors.base import SourceAdapter
from growthsync.core.cache import TTLCache
from growthsync.database import init_db
from growthsync.models.raw_models import RawRecord
from growthsync.models.sync_models import (
    AdsSourceConfig,
    CrmSourceConfig,
    SheetSourceConfig,
)
from growthsync.storage.config_store import SyncConfigStore
from growthsync.sync.chunker import RangeChunker


# ── Fakes ────────────────────────────────────────────────────────────────────

class FakeAdapter(SourceAdapter):
    """In-memory source: returns preset rows inside the requested range."""

    def __init__(self, kind: str, rows: Optional[List[RawRecord]] = None,
                 error: Optional[Exception] = None):
        self.kind = kind
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def fetch_range(self, config, start, end):
        self.calls.append((start, end))
        if self.error is not None:
            raise self.error
        return [r for r in self.rows if r.date is None or start <= r.date <= end]


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# ── Cache / chunker ──────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(CacheConfig(max_entries=100, ttl_seconds=900), clock=clock)


@pytest.fixture
def make_chunker(cache):
    """Chunker without pacing delays over the given adapters."""
    def _make(adapters: Dict[str, SourceAdapter]) -> RangeChunker:
        return RangeChunker(cache, adapters, stagger_seconds=0, request_delay_seconds=0)
    return _make


# ── Raw rows and adapters ────────────────────────────────────────────────────

@pytest.fixture
def make_raw():
    def _make(source: str, day: date, row_index: Optional[int] = None, **fields) -> RawRecord:
        return RawRecord(source=source, date=day, fields=fields, row_index=row_index)
    return _make


@pytest.fixture
def fake_adapter():
    return FakeAdapter


# ── Source configs ───────────────────────────────────────────────────────────

@pytest.fixture
def sheet_config():
    return SheetSourceConfig(
        spreadsheet_id="sheet-1",
        credentials_ref="google-1",
        field_mappings={"B": "amount_spent", "C": "leads"},
    )


@pytest.fixture
def ads_config():
    return AdsSourceConfig(ad_account_id="act_123", credentials_ref="meta-1")


@pytest.fixture
def crm_config():
    return CrmSourceConfig(location_id="loc-1", credentials_ref="crm-1")


@pytest.fixture
def config_store(session):
    return SyncConfigStore(session)
