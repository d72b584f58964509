"""Tests for the CRM adapter: pagination, event fields, rate-limit headers."""

import logging
from datetime import date

import httpx
import pytest

from growthsync.connectors.credentials import SQLCredentialStore, TokenProvider
from growthsync.connectors.crm import client as crm_client
from growthsync.connectors.crm.adapter import (
    CrmAdapter,
    appointment_fields,
    invoice_fields,
    opportunity_fields,
)
from growthsync.connectors.crm.client import CrmClient
from growthsync.core.errors import ConfigError, RateLimitError
from growthsync.models.sync_models import CrmSourceConfig, SourceCredential
from growthsync.sync.normalizer import aggregate_raw

BASE = "https://crm.example.test"

APPOINTMENTS = [
    {"id": "a1", "appointmentStatus": "showed", "startTime": "2024-01-02T10:00:00Z"},
    {"id": "a2", "appointmentStatus": "noshow", "startTime": "2024-01-02T15:00:00Z"},
    {"id": "a3", "appointmentStatus": "cancelled", "startTime": "2024-01-03T09:00:00Z"},
    {"id": "a4", "appointmentStatus": "confirmed", "startTime": "2023-12-01T09:00:00Z"},
]
OPPORTUNITIES = [
    {"id": "o1", "status": "won", "monetaryValue": 500, "dateAdded": "2024-01-02T08:00:00Z"},
    {"id": "o2", "status": "open", "monetaryValue": 200, "dateAdded": "2024-01-03T08:00:00Z"},
]
INVOICES = [
    {"id": "i1", "status": "paid", "amountPaid": 300, "paidAt": "2024-01-02T12:00:00Z"},
    {"id": "i2", "status": "sent", "totalAmount": 900, "issueDate": "2024-01-02"},
]

CONFIG = CrmSourceConfig(location_id="loc-1", credentials_ref="crm-1")
START, END = date(2024, 1, 1), date(2024, 1, 31)


@pytest.fixture(autouse=True)
def small_pages(monkeypatch):
    monkeypatch.setattr(crm_client, "PAGE_SIZE", 2)


@pytest.fixture
def credential(session):
    session.add(SourceCredential(credentials_ref="crm-1", provider="crm", access_token="tok"))
    session.commit()


def make_adapter(session, handler):
    transport = httpx.MockTransport(handler)
    tokens = TokenProvider(SQLCredentialStore(session), transport=transport)
    return CrmAdapter(CrmClient(tokens, base_url=BASE, transport=transport))


def crm_handler(seen, headers=None):
    data = {"appointments": APPOINTMENTS, "opportunities": OPPORTUNITIES, "invoices": INVOICES}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        resource = request.url.path.rsplit("/", 1)[-1]
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        return httpx.Response(
            200, json={"data": data[resource][offset:offset + limit]}, headers=headers
        )
    return handler


# ── Field builders ───────────────────────────────────────────────────────────

class TestFieldBuilders:
    def test_appointment_buckets(self):
        fields = appointment_fields({"id": "a1", "appointmentStatus": "Showed"})
        assert fields["appointments_total"] == 1
        assert fields["appointments_completed"] == 1
        assert fields["record_type"] == "appointment"
        assert fields["id"] == "appointment:a1"

    def test_unknown_appointment_status_only_counts_total(self):
        fields = appointment_fields({"id": "a9", "status": "weird"})
        assert fields["appointments_total"] == 1
        assert not [k for k in fields if k.startswith("appointments_") and k != "appointments_total"]

    def test_won_opportunity_value(self):
        fields = opportunity_fields({"id": "o1", "status": "won", "monetaryValue": "1,500"})
        assert fields["deals_won"] == 1
        assert fields["deal_value"] == 1500.0
        assert fields["won_value"] == 1500.0
        assert "revenue" not in fields

    def test_lost_opportunity_has_no_won_value(self):
        fields = opportunity_fields({"id": "o3", "status": "abandoned", "monetaryValue": 80})
        assert fields["deals_lost"] == 1
        assert "won_value" not in fields

    def test_only_paid_invoices(self):
        assert invoice_fields({"id": "i2", "status": "sent", "totalAmount": 900}) is None
        fields = invoice_fields({"id": "i3", "status": "PAID", "totalAmount": "75.50"})
        assert fields["revenue"] == 75.5


# ── fetch_range ──────────────────────────────────────────────────────────────

class TestCrmAdapter:
    async def test_offset_pagination(self, session, credential):
        seen = []
        adapter = make_adapter(session, crm_handler(seen))
        await adapter.fetch_range(CONFIG, START, END)

        appointment_offsets = [
            int(r.url.params["offset"]) for r in seen if r.url.path.endswith("/appointments")
        ]
        assert appointment_offsets == [0, 2, 4]
        first = seen[0]
        assert first.url.path == "/locations/loc-1/appointments"
        assert first.url.params["startDate"] == "2024-01-01"
        assert first.url.params["endDate"] == "2024-01-31"
        assert first.headers["Authorization"] == "Bearer tok"
        assert first.headers["Version"]

    async def test_records_and_daily_totals(self, session, credential):
        adapter = make_adapter(session, crm_handler([]))
        records = await adapter.fetch_range(CONFIG, START, END)

        # a4 is outside the range and i2 is unpaid
        ids = sorted(r.external_id for r in records)
        assert ids == sorted([
            "appointment:a1", "appointment:a2", "appointment:a3",
            "opportunity:o1", "opportunity:o2", "invoice:i1",
        ])

        agg = aggregate_raw(records, CONFIG.mapping(), START, END)
        day = agg.daily_values()[date(2024, 1, 2)]
        assert day["appointments_total"] == 2
        assert day["appointments_completed"] == 1
        assert day["appointments_no_show"] == 1
        assert day["deals_total"] == 1
        assert day["deals_won"] == 1
        assert day["won_value"] == 500.0
        assert day["deal_value"] == 500.0
        assert day["revenue"] == 300.0
        assert "status" not in day and "id" not in day

    async def test_include_limits_resources(self, session, credential):
        seen = []
        adapter = make_adapter(session, crm_handler(seen))
        config = CONFIG.model_copy(update={"include": ["invoices"]})
        records = await adapter.fetch_range(config, START, END)
        assert {r.url.path for r in seen} == {"/locations/loc-1/invoices"}
        assert [r.external_id for r in records] == ["invoice:i1"]

    async def test_low_daily_allowance_warns(self, session, credential, caplog):
        adapter = make_adapter(
            session, crm_handler([], headers={"X-RateLimit-Daily-Remaining": "12"})
        )
        with caplog.at_level(logging.WARNING, logger="growthsync.crm.client"):
            await adapter.fetch_range(CONFIG.model_copy(update={"include": ["invoices"]}), START, END)
        assert any("rate limit approaching" in r.getMessage() for r in caplog.records)

    async def test_throttled(self, session, credential):
        def handler(request):
            return httpx.Response(429, json={"message": "Too many requests"},
                                  headers={"Retry-After": "60"})

        adapter = make_adapter(session, handler)
        with pytest.raises(RateLimitError) as exc_info:
            await adapter.fetch_range(CONFIG, START, END)
        assert exc_info.value.retry_after == 60

    async def test_blank_location(self, session, credential):
        adapter = make_adapter(session, crm_handler([]))
        with pytest.raises(ConfigError):
            await adapter.fetch_range(CONFIG.model_copy(update={"location_id": ""}), START, END)
