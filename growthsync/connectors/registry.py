"""GrowthSync — Source adapter wiring."""

from typing import Dict

import httpx
from sqlmodel import Session

from growthsync.connectors.base import SourceAdapter
from growthsync.connectors.credentials import SQLCredentialStore, TokenProvider
from growthsync.connectors.crm.adapter import CrmAdapter
from growthsync.connectors.crm.client import CrmClient
from growthsync.connectors.meta.adapter import AdsAdapter
from growthsync.connectors.meta.client import MetaClient
from growthsync.connectors.sheets.adapter import SheetsAdapter
from growthsync.connectors.sheets.client import SheetsClient


def build_adapters(
    tokens: TokenProvider, transport: httpx.AsyncBaseTransport | None = None
) -> Dict[str, SourceAdapter]:
    """One adapter per source kind, sharing the token provider."""
    return {
        SheetsAdapter.kind: SheetsAdapter(SheetsClient(tokens, transport=transport)),
        AdsAdapter.kind: AdsAdapter(MetaClient(tokens, transport=transport)),
        CrmAdapter.kind: CrmAdapter(CrmClient(tokens, transport=transport)),
    }


async def close_adapters(adapters: Dict[str, SourceAdapter]) -> None:
    for adapter in adapters.values():
        await adapter.close()


def default_adapter_factory(session: Session) -> Dict[str, SourceAdapter]:
    """Adapters whose tokens are read from and refreshed into ``session``.

    Providers built per session still share one refresh lock per credential.
    """
    return build_adapters(TokenProvider(SQLCredentialStore(session)))
