"""GrowthSync — CRM API Client (LeadConnector).

Location-scoped list endpoints with ``limit`` / ``offset`` pagination and
daily rate-limit headers.
"""

from datetime import date
from typing import Any, Dict, List

import httpx

from growthsync.config import settings
from growthsync.connectors.base import HTTPSourceClient
from growthsync.connectors.credentials import TokenProvider
from growthsync.core.errors import TransientNetworkError
from growthsync.core.logging import get_logger

logger = get_logger("crm.client")

PAGE_SIZE = 100
MAX_PAGES = 50
DAILY_REMAINING_WARNING = 1000


class CrmClient(HTTPSourceClient):
    """Async HTTP client for the CRM REST API."""

    source_name = "crm"

    def __init__(
        self,
        tokens: TokenProvider,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(tokens=tokens, transport=transport)
        self.base_url = (base_url or settings.crm_base_url).rstrip("/")

    def _check_rate_limit(self, resp: httpx.Response) -> None:
        """Warn when the daily allowance is running low."""
        remaining = resp.headers.get("X-RateLimit-Daily-Remaining")
        if remaining is None:
            return
        try:
            left = int(remaining)
        except ValueError:
            return
        if left < DAILY_REMAINING_WARNING:
            logger.warning(
                f"CRM daily rate limit approaching ({left} requests left, "
                f"limit {resp.headers.get('X-RateLimit-Limit-Daily', '?')})",
                extra={"source": self.source_name},
            )

    async def _list_page(
        self, url: str, params: Dict[str, Any], token: str
    ) -> List[Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Version": settings.crm_api_version,
            "Accept": "application/json",
        }
        resp = await self._send("GET", url, params=params, headers=headers)
        self._check_rate_limit(resp)
        try:
            body = resp.json()
        except ValueError as e:
            raise TransientNetworkError("crm: response was not JSON") from e
        return body.get("data", []) if isinstance(body, dict) else []

    async def list_resource(
        self,
        credentials_ref: str,
        location_id: str,
        resource: str,
        start: date,
        end: date,
    ) -> List[Dict[str, Any]]:
        """Every item of ``resource`` for the location within the date window."""
        url = f"{self.base_url}/locations/{location_id}/{resource}"

        async def call(token: str):
            items: List[Dict[str, Any]] = []
            for page in range(MAX_PAGES):
                params = {
                    "startDate": start.isoformat(),
                    "endDate": end.isoformat(),
                    "limit": PAGE_SIZE,
                    "offset": page * PAGE_SIZE,
                }
                batch = await self._list_page(url, params, token)
                items.extend(batch)
                if len(batch) < PAGE_SIZE:
                    break
            else:
                logger.warning(f"Stopped paginating {resource} after {MAX_PAGES} pages")
            return items

        items = await self._with_token(credentials_ref, call)
        logger.info(f"Fetched {len(items)} {resource} for location {location_id}")
        return items
