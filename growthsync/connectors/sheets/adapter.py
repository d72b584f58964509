"""GrowthSync — Spreadsheet source adapter.

Reads every configured tab, finds each row's date in ``date_column`` and keeps
rows inside the requested range. The Sheets API has no row filtering, so the
range is applied here. Rows whose date cannot be read are returned flagged so
they are reported rather than lost. Raw fields are keyed by column letter;
the project's field mapping turns letters into metric names later.
"""

from datetime import date
from typing import Any, List

from growthsync.connectors.base import SourceAdapter
from growthsync.connectors.sheets.client import SheetsClient
from growthsync.core.errors import ConfigError
from growthsync.core.logging import get_logger
from growthsync.core.values import is_blank, parse_date
from growthsync.models.raw_models import RawRecord
from growthsync.models.sync_models import SheetSourceConfig

logger = get_logger("sheets.adapter")


def column_letter_to_index(letter: str) -> int:
    """``A`` -> 0, ``Z`` -> 25, ``AA`` -> 26."""
    letters = letter.strip().upper()
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ConfigError(f"Invalid column letter '{letter}'", field="date_column")
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def index_to_column_letter(index: int) -> str:
    """0 -> ``A``, 26 -> ``AA``."""
    if index < 0:
        raise ValueError("Column index must be non-negative")
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


class SheetsAdapter(SourceAdapter):
    kind = "sheet"

    def __init__(self, client: SheetsClient):
        self.client = client

    async def close(self) -> None:
        await self.client.close()

    async def fetch_range(
        self, config: SheetSourceConfig, start: date, end: date
    ) -> List[RawRecord]:
        if not config.spreadsheet_id.strip():
            raise ConfigError("Spreadsheet id is required", field="spreadsheet_id")
        if not config.sheet_names:
            raise ConfigError("At least one sheet name is required", field="sheet_names")
        if not config.field_mappings and not config.unique_id_field:
            raise ConfigError(
                "Map at least one column to a metric (or set a unique id column)",
                field="field_mappings",
            )
        date_index = column_letter_to_index(config.date_column)

        records: List[RawRecord] = []
        for sheet_name in config.sheet_names:
            rows = await self.client.get_values(
                config.credentials_ref, config.spreadsheet_id, sheet_name
            )
            records.extend(
                self._rows_in_range(rows, sheet_name, date_index, config.header_rows, start, end)
            )
        return records

    def _rows_in_range(
        self,
        rows: List[List[Any]],
        sheet_name: str,
        date_index: int,
        header_rows: int,
        start: date,
        end: date,
    ) -> List[RawRecord]:
        """Rows dated inside the range, plus every row whose date cannot be read.

        Undated rows carry ``problem`` and are reported by the normalizer.
        """
        records: List[RawRecord] = []
        unreadable = 0

        # Sheet row numbers are 1-based and include the header rows
        for row_number, row in enumerate(rows[header_rows:], start=header_rows + 1):
            if not row or all(is_blank(cell) for cell in row):
                continue
            cell = row[date_index] if date_index < len(row) else None
            day = parse_date(cell)
            if day is not None and not start <= day <= end:
                continue

            fields = {
                index_to_column_letter(i): value
                for i, value in enumerate(row)
                if i != date_index and not is_blank(value)
            }
            problem = None
            if day is None:
                unreadable += 1
                if is_blank(cell):
                    problem = "no date"
                else:
                    problem = f"unreadable date '{str(cell).strip()[:40]}'"
            records.append(
                RawRecord(
                    source=self.kind,
                    date=day,
                    fields=fields,
                    external_id=f"{sheet_name}!{row_number}",
                    row_index=row_number,
                    problem=problem,
                )
            )

        if unreadable:
            logger.warning(f"{unreadable} rows with unreadable dates in '{sheet_name}'")
        logger.info(f"{len(records) - unreadable} rows in range from '{sheet_name}'")
        return records
