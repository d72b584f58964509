"""GrowthSync — Ads source adapter (Meta insights)."""

from datetime import date
from typing import List

from growthsync.connectors.base import SourceAdapter
from growthsync.connectors.meta.client import MetaClient
from growthsync.connectors.meta.transformer import entity_id, flatten_insight_row
from growthsync.core.errors import ConfigError
from growthsync.core.logging import get_logger
from growthsync.core.values import parse_date
from growthsync.models.raw_models import RawRecord
from growthsync.models.sync_models import AdsSourceConfig

logger = get_logger("meta.adapter")


class AdsAdapter(SourceAdapter):
    kind = "ads"

    def __init__(self, client: MetaClient):
        self.client = client

    async def close(self) -> None:
        await self.client.close()

    async def fetch_range(
        self, config: AdsSourceConfig, start: date, end: date
    ) -> List[RawRecord]:
        if not config.ad_account_id.strip():
            raise ConfigError("Ad account id is required", field="ad_account_id")

        rows = await self.client.get_insights(
            config.credentials_ref, config.ad_account_id, start, end, config.level
        )

        records: List[RawRecord] = []
        for position, row in enumerate(rows):
            day = parse_date(row.get("date_start"))
            # time_range is inclusive on the API side; filter anyway
            if day is None or not start <= day <= end:
                continue
            records.append(
                RawRecord(
                    source=self.kind,
                    date=day,
                    fields=flatten_insight_row(row),
                    external_id=f"{entity_id(row, config.level)}:{day.isoformat()}",
                    row_index=position,
                )
            )
        return records
