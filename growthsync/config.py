"""GrowthSync — Central Configuration via Pydantic Settings."""

import os
from dataclasses import dataclass
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Ads platform (Meta Marketing API) ──
    meta_api_version: str = "v22.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── CRM (LeadConnector / GHL) ──
    crm_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_version: str = "2021-07-28"

    # ── Google Sheets + OAuth ──
    sheets_base_url: str = "https://sheets.googleapis.com/v4/spreadsheets"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_client_id: str = ""
    google_client_secret: str = ""
    token_refresh_margin_seconds: int = 300  # refresh when expiring within 5 min

    # ── Database ──
    database_url: str = ""

    # ── Cache ──
    cache_ttl_seconds: float = 15 * 60
    cache_max_entries: int = 100

    # ── Chunking / pacing ──
    max_chunk_days: int = 30
    chunk_stagger_seconds: float = 0.1
    request_delay_seconds: float = 0.1
    http_timeout_seconds: float = 30.0

    # ── Scheduler ──
    scheduler_enabled: bool = True
    scheduler_poll_minutes: int = 5
    max_backoff_minutes: int = 24 * 60
    default_sync_lookback_days: int = 7

    # ── Mode migration ──
    default_record_type: str = "converted_sale"
    large_dataset_threshold: int = 100

    # ── App ──
    log_level: str = "INFO"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/growthsync.db"
        return "sqlite:///./growthsync.db"

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@dataclass(frozen=True)
class CacheConfig:
    """Bounds for one TTLCache instance."""

    max_entries: int = 100
    ttl_seconds: float = 15 * 60

    @classmethod
    def from_settings(cls, s: "Settings") -> "CacheConfig":
        return cls(max_entries=s.cache_max_entries, ttl_seconds=s.cache_ttl_seconds)


settings = Settings()
