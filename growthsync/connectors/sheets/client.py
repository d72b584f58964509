"""GrowthSync — Google Sheets API Client."""

from typing import Any, List
from urllib.parse import quote

import httpx

from growthsync.config import settings
from growthsync.connectors.base import HTTPSourceClient
from growthsync.connectors.credentials import TokenProvider
from growthsync.core.logging import get_logger

logger = get_logger("sheets.client")


class SheetsClient(HTTPSourceClient):
    """Reads cell values through the Sheets ``values`` endpoint with a bearer token."""

    source_name = "sheet"

    def __init__(
        self,
        tokens: TokenProvider,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(tokens=tokens, transport=transport)
        self.base_url = (base_url or settings.sheets_base_url).rstrip("/")

    async def get_values(
        self, credentials_ref: str, spreadsheet_id: str, sheet_name: str
    ) -> List[List[Any]]:
        """All rows of one tab as formatted strings (header rows included)."""
        url = f"{self.base_url}/{spreadsheet_id}/values/{quote(sheet_name, safe='')}"
        params = {
            "valueRenderOption": "FORMATTED_VALUE",
            "dateTimeRenderOption": "FORMATTED_STRING",
            "majorDimension": "ROWS",
        }

        async def call(token: str):
            return await self._request(
                "GET", url, params=params, headers={"Authorization": f"Bearer {token}"}
            )

        body = await self._with_token(credentials_ref, call)
        values = body.get("values", [])
        logger.info(f"Fetched {len(values)} rows from tab '{sheet_name}'")
        return values
