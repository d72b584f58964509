"""Tests for the spreadsheet adapter and its HTTP client."""

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from growthsync.connectors.credentials import SQLCredentialStore, TokenProvider
from growthsync.connectors.sheets.adapter import (
    SheetsAdapter,
    column_letter_to_index,
    index_to_column_letter,
)
from growthsync.connectors.sheets.client import SheetsClient
from growthsync.core.errors import (
    AuthError,
    ConfigError,
    RateLimitError,
    TransientNetworkError,
)
from growthsync.models.sync_models import SheetSourceConfig, SourceCredential
from growthsync.sync.normalizer import aggregate_raw

BASE = "https://sheets.example.test/v4/spreadsheets"
TOKEN_URL = "https://oauth.example.test/token"

VALUES = [
    ["Date", "Spend", "Leads", "Notes"],
    ["2024-01-01", "$100.00", "3"],
    ["not a date", "5", ""],
    [],
    ["2024-02-01", "7", "1"],
    ["01/02/2024", "50", "2", "promo"],
]


@pytest.fixture
def credential(session):
    session.add(SourceCredential(
        credentials_ref="google-1",
        provider="google",
        access_token="stale",
        refresh_token="r-1",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    ))
    session.commit()


def make_adapter(session, handler):
    transport = httpx.MockTransport(handler)
    tokens = TokenProvider(
        SQLCredentialStore(session),
        token_url=TOKEN_URL,
        client_id="cid",
        client_secret="secret",
        transport=transport,
    )
    return SheetsAdapter(SheetsClient(tokens, base_url=BASE, transport=transport))


def values_handler(seen=None, status=200, headers=None, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status != 200:
            return httpx.Response(status, json=body or {}, headers=headers)
        return httpx.Response(200, json={"values": VALUES})
    return handler


CONFIG = SheetSourceConfig(
    spreadsheet_id="sheet-1",
    sheet_names=["Jan Ads"],
    credentials_ref="google-1",
    field_mappings={"B": "amount_spent", "C": "leads"},
)


# ── Column letters ───────────────────────────────────────────────────────────

class TestColumnLetters:
    @pytest.mark.parametrize("letter,index", [("A", 0), ("Z", 25), ("AA", 26), ("AZ", 51), ("BA", 52)])
    def test_round_trip(self, letter, index):
        assert column_letter_to_index(letter) == index
        assert index_to_column_letter(index) == letter

    def test_lowercase(self):
        assert column_letter_to_index("c") == 2

    @pytest.mark.parametrize("bad", ["", "1", "A1", "É"])
    def test_invalid(self, bad):
        with pytest.raises(ConfigError):
            column_letter_to_index(bad)


# ── fetch_range ──────────────────────────────────────────────────────────────

class TestSheetsAdapter:
    async def test_rows_in_range_keyed_by_letter(self, session, credential):
        seen = []
        adapter = make_adapter(session, values_handler(seen))

        records = await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 31))

        dated = [r for r in records if r.is_valid]
        assert [r.date for r in dated] == [date(2024, 1, 1), date(2024, 1, 2)]
        assert dated[0].fields == {"B": "$100.00", "C": "3"}
        assert dated[1].fields == {"B": "50", "C": "2", "D": "promo"}
        assert dated[0].row_index == 2
        assert dated[1].row_index == 6
        assert dated[0].external_id == "Jan Ads!2"

        [request] = seen
        assert str(request.url).startswith(f"{BASE}/sheet-1/values/Jan%20Ads?")
        assert request.headers["Authorization"] == "Bearer stale"

    async def test_unreadable_date_row_returned_flagged(self, session, credential):
        adapter = make_adapter(session, values_handler())
        records = await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 31))
        [flagged] = [r for r in records if not r.is_valid]
        assert flagged.date is None
        assert flagged.row_index == 3
        assert flagged.external_id == "Jan Ads!3"
        assert flagged.problem == "unreadable date 'not a date'"

    async def test_mapped_spend(self, session, credential):
        adapter = make_adapter(session, values_handler())
        start, end = date(2024, 1, 1), date(2024, 1, 31)
        records = await adapter.fetch_range(CONFIG, start, end)
        agg = aggregate_raw(records, CONFIG.mapping(), start, end)
        assert agg.daily_values()[date(2024, 1, 1)] == {"spend": 100.0, "leads": 3.0}
        assert agg.issues.problems == {"Jan Ads!3": "unreadable date 'not a date'"}

    async def test_every_tab_read(self, session, credential):
        seen = []
        adapter = make_adapter(session, values_handler(seen))
        config = CONFIG.model_copy(update={"sheet_names": ["A", "B"]})
        start, end = date(2024, 1, 1), date(2024, 1, 31)
        records = await adapter.fetch_range(config, start, end)
        assert len(seen) == 2
        assert len([r for r in records if r.is_valid]) == 4

        # Same row number on two tabs: two separate problems
        agg = aggregate_raw(records, config.mapping(), start, end)
        assert set(agg.issues.problems) == {"A!3", "B!3"}
        assert agg.issues.row_indices == [3, 3]

    async def test_missing_mapping_is_config_error(self, session, credential):
        seen = []
        adapter = make_adapter(session, values_handler(seen))
        with pytest.raises(ConfigError) as exc_info:
            await adapter.fetch_range(
                CONFIG.model_copy(update={"field_mappings": {}}), date(2024, 1, 1), date(2024, 1, 2)
            )
        assert exc_info.value.details["field"] == "field_mappings"
        assert seen == []

    async def test_unique_id_column_without_mapping_allowed(self, session, credential):
        adapter = make_adapter(session, values_handler())
        config = CONFIG.model_copy(update={"field_mappings": {}, "unique_id_field": "D"})
        records = await adapter.fetch_range(config, date(2024, 1, 1), date(2024, 1, 31))
        assert records

    async def test_config_checked_before_any_call(self, session, credential):
        seen = []
        adapter = make_adapter(session, values_handler(seen))
        with pytest.raises(ConfigError):
            await adapter.fetch_range(
                CONFIG.model_copy(update={"spreadsheet_id": " "}), date(2024, 1, 1), date(2024, 1, 2)
            )
        with pytest.raises(ConfigError):
            await adapter.fetch_range(
                CONFIG.model_copy(update={"sheet_names": []}), date(2024, 1, 1), date(2024, 1, 2)
            )
        assert seen == []

    async def test_empty_range_has_no_dated_rows(self, session, credential):
        adapter = make_adapter(session, values_handler())
        records = await adapter.fetch_range(CONFIG, date(2023, 1, 1), date(2023, 1, 31))
        # Only the row whose date cannot be read comes back
        assert [r.external_id for r in records] == ["Jan Ads!3"]
        assert not records[0].is_valid


# ── Error mapping and token retry ────────────────────────────────────────────

class TestSheetsErrors:
    @pytest.mark.parametrize("status,error", [
        (404, ConfigError),
        (400, ConfigError),
        (500, TransientNetworkError),
        (503, TransientNetworkError),
    ])
    async def test_status_mapping(self, session, credential, status, error):
        adapter = make_adapter(session, values_handler(status=status))
        with pytest.raises(error):
            await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 2))

    async def test_rate_limit_retry_after(self, session, credential):
        adapter = make_adapter(
            session, values_handler(status=429, headers={"Retry-After": "30"})
        )
        with pytest.raises(RateLimitError) as exc_info:
            await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 2))
        assert exc_info.value.retry_after == 30

    async def test_connection_failure_is_transient(self, session, credential):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        adapter = make_adapter(session, handler)
        with pytest.raises(TransientNetworkError):
            await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 2))

    async def test_401_refreshes_once_and_retries(self, session, credential):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == TOKEN_URL:
                return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer fresh":
                return httpx.Response(200, json={"values": VALUES})
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        adapter = make_adapter(session, handler)
        records = await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 31))

        assert len([r for r in records if r.is_valid]) == 2
        assert seen == ["Bearer stale", "Bearer fresh"]
        assert session.get(SourceCredential, "google-1").access_token == "fresh"

    async def test_401_after_refresh_is_auth_error(self, session, credential):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == TOKEN_URL:
                return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
            calls.append(request)
            return httpx.Response(401, json={"error": {"message": "nope"}})

        adapter = make_adapter(session, handler)
        with pytest.raises(AuthError):
            await adapter.fetch_range(CONFIG, date(2024, 1, 1), date(2024, 1, 2))
        assert len(calls) == 2
