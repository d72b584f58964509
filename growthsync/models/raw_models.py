"""GrowthSync — Raw Record Model.

What every source adapter returns: one dated row in the source's own field
vocabulary (column letters for sheets, API field names for ads, counter
increments for CRM events). Never mutated after the adapter builds it.
"""

from datetime import date as Date
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class RawRecord(BaseModel):
    """One source row inside the requested date range.

    A row the adapter could not read (no parseable date) is still returned,
    with ``problem`` set, so normalization reports it instead of losing it.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    date: Optional[Date] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    external_id: Optional[str] = None
    row_index: Optional[int] = None
    """Position in the source (sheet row number, page offset) for error reports."""
    problem: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.problem is None and self.date is not None
