"""GrowthSync — Cell / field value parsing shared by adapters and the normalizer."""

import re
from datetime import date, datetime
from typing import Any, Optional

_NUMBER_STRIP = re.compile(r"[,$%\s]")

# Formats seen in client spreadsheets, tried in order
DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y/%m/%d",
)


def parse_number(value: Any) -> Optional[float]:
    """Parse ``"$1,234.50"`` / ``"12%"`` / ``42`` into a float, ``None`` if blank or invalid."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = _NUMBER_STRIP.sub("", str(value))
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a date cell. ISO datetimes are truncated to their date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if "T" in text:
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
