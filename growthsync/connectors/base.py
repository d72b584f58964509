"""GrowthSync — Source adapter contract and shared HTTP plumbing.

Every adapter implements ``fetch_range(config, start, end)`` and returns raw
records strictly inside ``[start, end]``; "no data" is an empty list, never an
exception. HTTP failures are mapped onto the sync error taxonomy here so each
adapter reports them the same way. Nothing in this layer retries on its own
except the single forced token refresh after an ``AuthError``.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from growthsync.config import settings
from growthsync.connectors.credentials import TokenProvider
from growthsync.core.errors import (
    AuthError,
    ConfigError,
    RateLimitError,
    SyncError,
    TransientNetworkError,
)
from growthsync.core.logging import get_logger
from growthsync.models.raw_models import RawRecord

logger = get_logger("connectors")

T = TypeVar("T")


class SourceAdapter(ABC):
    """Uniform range fetch over one external source."""

    kind: str = ""

    @abstractmethod
    async def fetch_range(self, config: Any, start: date, end: date) -> List[RawRecord]:
        """Return raw rows dated within ``[start, end]`` (inclusive)."""

    async def close(self) -> None:
        return None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def error_for_status(
    status_code: int, message: str, retry_after: Optional[float] = None
) -> SyncError:
    """Map an HTTP status onto the error taxonomy."""
    if status_code in (401, 403):
        return AuthError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitError(message, retry_after=retry_after)
    if status_code >= 500:
        return TransientNetworkError(message, status_code=status_code)
    return ConfigError(message)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or f"HTTP {resp.status_code}"
    if isinstance(error, str):
        return error
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {resp.status_code}"


class HTTPSourceClient:
    """Async HTTP client shared by the source adapters.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    source_name = "http"

    def __init__(
        self,
        tokens: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self.tokens = tokens
        self._transport = transport
        self._timeout = timeout or settings.http_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    def _map_error(self, resp: httpx.Response) -> SyncError:
        """Turn a non-2xx response into a sync error. Adapters may refine this."""
        message = f"{self.source_name}: {_error_message(resp)}"
        return error_for_status(
            resp.status_code, message, parse_retry_after(resp.headers.get("Retry-After"))
        )

    async def _send(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
        data: Dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.request(method, url, params=params, headers=headers, data=data)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"{self.source_name}: request timed out ({type(e).__name__})"
            ) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(
                f"{self.source_name}: connection failed ({type(e).__name__})"
            ) from e

        if resp.is_error:
            error = self._map_error(resp)
            logger.warning(
                error.message, extra={"source": self.source_name, "status_code": resp.status_code}
            )
            raise error
        return resp

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        resp = await self._send(method, url, params=params, headers=headers)
        try:
            return resp.json()
        except ValueError as e:
            raise TransientNetworkError(f"{self.source_name}: response was not JSON") from e

    # ── Token handling ──

    async def _with_token(
        self, credentials_ref: str, call: Callable[[str], Awaitable[T]]
    ) -> T:
        """Run ``call(access_token)``; on AuthError force one refresh and retry once."""
        if self.tokens is None:
            raise ConfigError(f"{self.source_name}: no credentials provider configured")
        if not credentials_ref:
            raise ConfigError(
                f"{self.source_name}: credentials_ref is required", field="credentials_ref"
            )
        token = await self.tokens.get_access_token(credentials_ref)
        try:
            return await call(token)
        except AuthError:
            logger.warning(
                "Authentication failed, refreshing token and retrying once",
                extra={"source": self.source_name},
            )
            token = await self.tokens.get_access_token(
                credentials_ref, force_refresh=True, rejected_token=token
            )
            return await call(token)
