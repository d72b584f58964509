"""GrowthSync — Date range presets for manual and scheduled syncs."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from growthsync.config import settings
from growthsync.core.errors import ConfigError

PRESETS = ("today", "yesterday", "last_7d", "last_14d", "last_30d", "last_90d", "this_month")


def resolve_dates(
    date_range: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """Resolve explicit dates or a preset name into an inclusive (start, end)."""
    today = today or datetime.now(timezone.utc).date()

    if start_date and end_date:
        if end_date < start_date:
            raise ConfigError(f"Invalid date range: {start_date} is after {end_date}")
        return start_date, end_date

    if date_range:
        mapping = {
            "today": (today, today),
            "yesterday": (today - timedelta(days=1), today - timedelta(days=1)),
            "last_7d": (today - timedelta(days=7), today - timedelta(days=1)),
            "last_14d": (today - timedelta(days=14), today - timedelta(days=1)),
            "last_30d": (today - timedelta(days=30), today - timedelta(days=1)),
            "last_90d": (today - timedelta(days=90), today - timedelta(days=1)),
            "this_month": (today.replace(day=1), today),
        }
        if date_range not in mapping:
            raise ConfigError(f"Unknown date range preset '{date_range}'", field="date_range")
        return mapping[date_range]

    # Default: trailing lookback window ending today
    return today - timedelta(days=settings.default_sync_lookback_days), today
