"""GrowthSync — Meta Marketing API Client.

Handles bearer-token calls, Graph API error codes and ``paging.next``
pagination for the ads source.
"""

import json
from datetime import date
from typing import Any, Dict, List

import httpx

from growthsync.config import settings
from growthsync.connectors.base import HTTPSourceClient, parse_retry_after
from growthsync.connectors.credentials import TokenProvider
from growthsync.core.errors import AuthError, RateLimitError, SyncError
from growthsync.core.logging import get_logger

logger = get_logger("meta.client")

# Graph API error codes
TOKEN_ERROR_CODES = {190, 102}
THROTTLE_ERROR_CODES = {4, 17, 32, 613, 80000, 80003, 80004}

# Fields requested from the insights edge
INSIGHT_FIELDS = (
    "account_id,campaign_id,campaign_name,adset_id,ad_id,"
    "impressions,reach,clicks,spend,frequency,ctr,cpc,cpm,"
    "actions,action_values"
)


def normalize_account_id(ad_account_id: str) -> str:
    account = ad_account_id.strip()
    return account if account.startswith("act_") else f"act_{account}"


class MetaClient(HTTPSourceClient):
    """Async HTTP client for the Meta Marketing API."""

    source_name = "ads"

    def __init__(
        self,
        tokens: TokenProvider,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(tokens=tokens, transport=transport)
        self.base_url = (base_url or settings.meta_graph_url).rstrip("/")

    def _map_error(self, resp: httpx.Response) -> SyncError:
        """Graph API reports throttling and token problems in the error body."""
        try:
            error = resp.json().get("error", {})
        except ValueError:
            error = {}
        if not isinstance(error, dict):
            error = {}
        code = error.get("code")
        message = f"ads: {error.get('message', f'HTTP {resp.status_code}')}" if error else ""
        if code in TOKEN_ERROR_CODES:
            return AuthError(message, status_code=resp.status_code)
        if code in THROTTLE_ERROR_CODES:
            return RateLimitError(
                message, retry_after=parse_retry_after(resp.headers.get("Retry-After"))
            )
        return super()._map_error(resp)

    # ── Pagination ──

    async def _paginated_get(
        self,
        url: str,
        params: Dict[str, Any],
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Fetch all pages by following ``paging.next``."""
        all_data: List[Dict[str, Any]] = []
        current_url = url

        for page in range(max_pages):
            # The next URL already carries the query string, token included
            result = await self._request("GET", current_url, params if page == 0 else None)
            all_data.extend(result.get("data", []))

            next_url = result.get("paging", {}).get("next")
            if not next_url:
                break
            current_url = next_url
        else:
            logger.warning(f"Stopped paginating after {max_pages} pages")

        return all_data

    # ── Insights ──

    async def get_insights(
        self,
        credentials_ref: str,
        ad_account_id: str,
        since: date,
        until: date,
        level: str = "account",
    ) -> List[Dict[str, Any]]:
        """Daily insight rows (``time_increment=1``) for one account."""
        account = normalize_account_id(ad_account_id)
        url = f"{self.base_url}/{account}/insights"

        async def call(token: str):
            params = {
                "access_token": token,
                "fields": INSIGHT_FIELDS,
                "time_range": json.dumps(
                    {"since": since.isoformat(), "until": until.isoformat()}
                ),
                "time_increment": "1",
                "level": level,
                "limit": 500,
            }
            return await self._paginated_get(url, params)

        rows = await self._with_token(credentials_ref, call)
        logger.info(f"Fetched {len(rows)} {level} insight rows for {account}")
        return rows
