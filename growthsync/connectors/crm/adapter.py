"""GrowthSync — CRM source adapter.

Each appointment, opportunity or paid invoice becomes one raw record whose
fields are counter increments, so daily aggregation is a plain sum:

    appointment  appointments_total + appointments_<status bucket>
    opportunity  deals_total + deals_<status bucket>, deal_value, won_value
    invoice      revenue (paid invoices only)

Revenue comes from paid invoices only; won opportunities add ``won_value``.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from growthsync.connectors.base import SourceAdapter
from growthsync.connectors.crm.client import CrmClient
from growthsync.core.errors import ConfigError
from growthsync.core.logging import get_logger
from growthsync.core.values import parse_date, parse_number
from growthsync.models.raw_models import RawRecord
from growthsync.models.sync_models import CrmSourceConfig

logger = get_logger("crm.adapter")

APPOINTMENT_BUCKETS = {
    "scheduled": "scheduled",
    "confirmed": "scheduled",
    "booked": "scheduled",
    "completed": "completed",
    "showed": "completed",
    "no_show": "no_show",
    "noshow": "no_show",
    "cancelled": "cancelled",
    "canceled": "cancelled",
}

OPPORTUNITY_BUCKETS = {
    "won": "won",
    "lost": "lost",
    "abandoned": "lost",
    "open": "open",
}


def appointment_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    status = str(item.get("appointmentStatus") or item.get("status") or "").lower()
    fields: Dict[str, Any] = {
        "id": f"appointment:{item.get('id', '')}",
        "record_type": "appointment",
        "status": status or None,
        "appointments_total": 1,
    }
    bucket = APPOINTMENT_BUCKETS.get(status)
    if bucket:
        fields[f"appointments_{bucket}"] = 1
    return fields


def opportunity_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    status = str(item.get("status") or "open").lower()
    value = parse_number(item.get("monetaryValue"))
    bucket = OPPORTUNITY_BUCKETS.get(status, "open")
    fields: Dict[str, Any] = {
        "id": f"opportunity:{item.get('id', '')}",
        "record_type": "opportunity",
        "status": status,
        "deals_total": 1,
        f"deals_{bucket}": 1,
    }
    if value is not None:
        fields["amount"] = value
        fields["deal_value"] = value
        if bucket == "won":
            fields["won_value"] = value
    return fields


def invoice_fields(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if str(item.get("status") or "").lower() != "paid":
        return None
    paid = parse_number(item.get("amountPaid"))
    if paid is None:
        paid = parse_number(item.get("totalAmount"))
    fields: Dict[str, Any] = {
        "id": f"invoice:{item.get('id', '')}",
        "record_type": "invoice",
        "status": "paid",
    }
    if paid is not None:
        fields["amount"] = paid
        fields["revenue"] = paid
    return fields


# resource -> (date fields in preference order, field builder)
RESOURCES = {
    "appointments": (("startTime", "dateAdded"), appointment_fields),
    "opportunities": (("dateAdded", "createdAt"), opportunity_fields),
    "invoices": (("paidAt", "issueDate"), invoice_fields),
}


class CrmAdapter(SourceAdapter):
    kind = "crm"

    def __init__(self, client: CrmClient):
        self.client = client

    async def close(self) -> None:
        await self.client.close()

    async def fetch_range(
        self, config: CrmSourceConfig, start: date, end: date
    ) -> List[RawRecord]:
        if not config.location_id.strip():
            raise ConfigError("CRM location id is required", field="location_id")

        records: List[RawRecord] = []
        for resource in config.include:
            date_keys, build = RESOURCES[resource]
            items = await self.client.list_resource(
                config.credentials_ref, config.location_id, resource, start, end
            )
            dropped = 0
            for position, item in enumerate(items):
                day = next(
                    (d for d in (parse_date(item.get(k)) for k in date_keys) if d), None
                )
                fields = build(item)
                if fields is None:
                    continue
                if day is None or not start <= day <= end:
                    dropped += 1
                    continue
                records.append(
                    RawRecord(
                        source=self.kind,
                        date=day,
                        fields=fields,
                        external_id=fields["id"],
                        row_index=position,
                    )
                )
            if dropped:
                logger.info(f"Dropped {dropped} {resource} outside {start}..{end}")
        return records
