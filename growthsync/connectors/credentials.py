"""GrowthSync — Source credentials and OAuth token refresh.

``TokenProvider`` hands adapters a usable access token. A token expiring
within the refresh margin (or one the source just rejected) is exchanged at
the OAuth token endpoint, and the new token is persisted before it is
returned, so the next call does not refresh again.
"""

import asyncio
import weakref
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

import httpx
from sqlmodel import Session

from growthsync.config import settings
from growthsync.core.errors import AuthError, ConfigError, TransientNetworkError
from growthsync.core.logging import get_logger
from growthsync.models.sync_models import SourceCredential

logger = get_logger("connectors.credentials")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialStore(Protocol):
    def get(self, credentials_ref: str) -> Optional[SourceCredential]: ...

    def save(self, credential: SourceCredential) -> None: ...


class SQLCredentialStore:
    """Credentials persisted in the ``source_credentials`` table."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, credentials_ref: str) -> Optional[SourceCredential]:
        # Another session may have refreshed the token since it was loaded
        return self.session.get(SourceCredential, credentials_ref, populate_existing=True)

    def save(self, credential: SourceCredential) -> None:
        credential.updated_at = datetime.now(timezone.utc)
        self.session.add(credential)
        self.session.commit()


# event loop → {credentials_ref: lock}
_refresh_locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def refresh_lock(credentials_ref: str) -> asyncio.Lock:
    """Per-credential refresh lock shared by every provider on the running loop."""
    locks = _refresh_locks.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(credentials_ref, asyncio.Lock())


class TokenProvider:
    """Supplies access tokens, refreshing and persisting them as needed."""

    def __init__(
        self,
        store: CredentialStore,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_margin_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.token_url = token_url or settings.google_token_url
        self.client_id = client_id if client_id is not None else settings.google_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.google_client_secret
        )
        margin = (
            settings.token_refresh_margin_seconds
            if refresh_margin_seconds is None
            else refresh_margin_seconds
        )
        self.refresh_margin = timedelta(seconds=margin)
        self._transport = transport

    def _needs_refresh(self, credential: SourceCredential) -> bool:
        expires_at = as_utc(credential.expires_at)
        if expires_at is None:
            return False
        return expires_at - datetime.now(timezone.utc) <= self.refresh_margin

    async def get_access_token(
        self,
        credentials_ref: str,
        force_refresh: bool = False,
        rejected_token: Optional[str] = None,
    ) -> str:
        """A usable access token for ``credentials_ref``.

        ``force_refresh`` exchanges the token even when it looks valid, unless
        the stored token is no longer ``rejected_token`` (another caller already
        replaced it).
        """
        credential = self.store.get(credentials_ref)
        if credential is None:
            raise ConfigError(
                f"No credentials stored for '{credentials_ref}'", field="credentials_ref"
            )
        if not force_refresh and not self._needs_refresh(credential):
            return credential.access_token

        async with refresh_lock(credentials_ref):
            # Another task may have refreshed while we waited
            credential = self.store.get(credentials_ref)
            if rejected_token is not None and credential.access_token != rejected_token:
                force_refresh = False
            if not force_refresh and not self._needs_refresh(credential):
                return credential.access_token
            return await self._refresh(credential)

    async def _refresh(self, credential: SourceCredential) -> str:
        if not credential.refresh_token:
            raise AuthError("Access token expired and no refresh token is available")

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            async with httpx.AsyncClient(
                timeout=settings.http_timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(self.token_url, data=payload)
        except httpx.RequestError as e:
            raise TransientNetworkError(
                f"Token refresh failed to connect ({type(e).__name__})"
            ) from e

        if resp.status_code >= 500:
            raise TransientNetworkError(
                f"Token endpoint error (HTTP {resp.status_code})", status_code=resp.status_code
            )
        if resp.is_error:
            raise AuthError(
                f"Token refresh rejected (HTTP {resp.status_code})", status_code=resp.status_code
            )

        body = resp.json()
        access_token = body.get("access_token")
        if not access_token:
            raise AuthError("Token refresh response did not include an access token")

        credential.access_token = access_token
        if body.get("refresh_token"):
            credential.refresh_token = body["refresh_token"]
        expires_in = body.get("expires_in")
        credential.expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            if expires_in
            else None
        )
        # Persist before handing the token out
        self.store.save(credential)
        logger.info(f"Refreshed access token for '{credential.credentials_ref}'")
        return access_token
