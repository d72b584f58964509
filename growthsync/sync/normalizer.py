"""GrowthSync — Raw → canonical record normalizer.

Daily mode: raw rows are mapped through the project's field mapping, grouped
by date and aggregated with the registry rules into ``DailyMetricRecord`` rows.
Individual mode: each raw row becomes one ``IndividualRecord`` keyed by the
configured unique id field.
"""

from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from growthsync.core.errors import ConfigError, ValidationError
from growthsync.core.logging import get_logger
from growthsync.core.metric_registry import METRICS, canonical_name
from growthsync.core.values import is_blank, parse_number
from growthsync.models.metric_models import (
    METRIC_COLUMNS,
    DailyMetricRecord,
    IndividualRecord,
    SyncMode,
)
from growthsync.models.raw_models import RawRecord
from growthsync.models.sync_models import FieldMapping
from growthsync.sync.aggregation import AggregateMetrics, MetricBucket, RowIssues

logger = get_logger("sync.normalizer")

# Marker written into record_data by the daily → individual conversion
CONVERTED_ORIGIN = "daily_aggregate"

_MONEY_METRICS = {"revenue", "deal_value", "won_value"}


def _coerce(name: str, value: Any) -> Any:
    """Registry metrics must be numeric; custom fields stay numeric when they parse."""
    if is_blank(value):
        return None
    if name in METRICS:
        return parse_number(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    number = parse_number(value)
    if number is not None:
        return number
    return str(value).strip()


def _put(values: Dict[str, Any], name: str, value: Any) -> None:
    existing = values.get(name)
    if isinstance(existing, (int, float)) and isinstance(value, (int, float)):
        values[name] = existing + value
    else:
        values[name] = value


def _clip(value: Any, width: int = 40) -> str:
    text = str(value).strip()
    return text if len(text) <= width else text[: width - 3] + "..."


def map_fields(
    fields: Dict[str, Any],
    mapping: FieldMapping,
    problems: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Apply the field mapping to one raw row.

    With no explicit mapping every field is kept under its canonical name.
    Reserved fields (unique id, amount, status, record type) never become metrics.
    A registry metric that does not parse as a number is left out and, when
    ``problems`` is given, described there.
    """
    values: Dict[str, Any] = {}
    reserved = mapping.reserved_fields

    if mapping.fields:
        triples = [
            (raw_key, target, fields[raw_key])
            for raw_key, target in mapping.fields.items()
            if raw_key in fields
        ]
    else:
        triples = [(key, key, value) for key, value in fields.items() if key not in reserved]

    for raw_key, target, raw_value in triples:
        name = canonical_name(target)
        value = _coerce(name, raw_value)
        if value is None:
            if problems is not None and not is_blank(raw_value):
                problems.append(f"{raw_key}: '{_clip(raw_value)}' is not a number for {name}")
            continue
        _put(values, name, value)
    return values


def _row_index(raw: RawRecord, position: int) -> int:
    return raw.row_index if raw.row_index is not None else position


def _mapped_row(
    raw: RawRecord, position: int, mapping: FieldMapping, issues: RowIssues
) -> Optional[Dict[str, Any]]:
    """Mapped values of a readable row; anything else is recorded in ``issues``."""
    if not raw.is_valid:
        issues.add_row(raw.external_id, _row_index(raw, position), raw.problem or "row has no date")
        return None
    problems: List[str] = []
    values = map_fields(raw.fields, mapping, problems)
    if problems:
        issues.add_row(raw.external_id, _row_index(raw, position), "; ".join(problems))
        return None
    return values


def build_daily_record(
    project_id: str,
    source: str,
    day: date,
    values: Dict[str, Any],
    user_id: Optional[str] = None,
) -> DailyMetricRecord:
    """Split aggregated values into metric columns and ``extra_data``."""
    columns: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for name, value in values.items():
        if name in METRIC_COLUMNS:
            columns[name] = value
        else:
            extra[name] = value
    return DailyMetricRecord(
        project_id=project_id,
        date=day,
        source=source,
        user_id=user_id,
        extra_data=extra,
        **columns,
    )


def daily_records_from_aggregate(
    agg: AggregateMetrics,
    project_id: str,
    source: str,
    user_id: Optional[str] = None,
) -> List[DailyMetricRecord]:
    return [
        build_daily_record(project_id, source, day, values, user_id)
        for day, values in agg.daily_values().items()
    ]


def aggregate_raw(
    raw_records: Iterable[RawRecord], mapping: FieldMapping, start: date, end: date
) -> AggregateMetrics:
    """Map and aggregate raw rows for one fetched range.

    Rows that cannot be read are kept out of the buckets and listed in
    ``issues`` on the result.
    """
    issues = RowIssues()
    rows: List[Tuple[date, Dict[str, Any]]] = []
    for position, raw in enumerate(raw_records):
        values = _mapped_row(raw, position, mapping, issues)
        if values is not None:
            rows.append((raw.date, values))
    return AggregateMetrics.from_rows(start, end, rows, issues)


def normalize_daily(
    raw_records: List[RawRecord],
    mapping: FieldMapping,
    project_id: str,
    source: str,
    user_id: Optional[str] = None,
    strict: bool = True,
) -> List[DailyMetricRecord]:
    """Aggregate raw rows into one record per date.

    Unreadable rows are collected into one ``ValidationError``, raised with
    ``strict`` and logged otherwise.
    """
    if not raw_records:
        return []
    days = [r.date for r in raw_records if r.date is not None]
    start = min(days, default=date.today())
    end = max(days, default=start)
    agg = aggregate_raw(raw_records, mapping, start, end)

    error = agg.issues.to_error()
    if error is not None:
        if strict:
            raise error
        logger.warning(error.message, extra={"project_id": project_id, "source": source})
    return daily_records_from_aggregate(agg, project_id, source, user_id)


def normalize_individual(
    raw_records: List[RawRecord],
    mapping: FieldMapping,
    project_id: str,
    source: str,
    user_id: Optional[str] = None,
    strict: bool = True,
) -> Tuple[List[IndividualRecord], Optional[ValidationError]]:
    """One record per raw row, keyed by ``mapping.unique_id_field``.

    Every unreadable row (no date, blank id, a metric or amount that is not a
    number) is collected, keyed by row reference. With ``strict`` the collected
    problems are raised as one ``ValidationError``; otherwise the valid records
    are returned alongside the error so the caller can report it.
    """
    id_field = mapping.unique_id_field
    if not id_field:
        raise ConfigError(
            "Individual records mode requires a unique id field", field="unique_id_field"
        )

    by_id: Dict[str, IndividualRecord] = {}
    issues = RowIssues()

    for position, raw in enumerate(raw_records):
        if raw.is_valid and is_blank(raw.fields.get(id_field)):
            issues.add_row(
                raw.external_id,
                _row_index(raw, position),
                f"missing value for unique id field '{id_field}'",
            )
            continue
        record_data = _mapped_row(raw, position, mapping, issues)
        if record_data is None:
            continue

        amount = None
        if mapping.amount_field:
            raw_amount = raw.fields.get(mapping.amount_field)
            amount = parse_number(raw_amount)
            if amount is None and not is_blank(raw_amount):
                issues.add_row(
                    raw.external_id,
                    _row_index(raw, position),
                    f"{mapping.amount_field}: '{_clip(raw_amount)}' is not a valid amount",
                )
                continue

        record_type = mapping.record_type
        if mapping.record_type_field and not is_blank(raw.fields.get(mapping.record_type_field)):
            record_type = str(raw.fields[mapping.record_type_field]).strip()

        status = None
        if mapping.status_field and not is_blank(raw.fields.get(mapping.status_field)):
            status = str(raw.fields[mapping.status_field]).strip()

        record_id = str(raw.fields[id_field]).strip()
        # Same id twice in one fetch: the later row wins
        by_id[record_id] = IndividualRecord(
            project_id=project_id,
            record_id=record_id,
            date=raw.date,
            source=source,
            record_type=record_type,
            amount=amount,
            status=status,
            user_id=user_id,
            record_data=record_data,
        )

    error = issues.to_error("row(s) could not become records")
    if error is not None:
        if strict:
            raise error
        logger.warning(
            error.message,
            extra={"project_id": project_id, "source": source},
        )
    return list(by_id.values()), error


def normalize(
    raw_records: List[RawRecord],
    mapping: FieldMapping,
    mode: SyncMode,
    project_id: str,
    source: str,
    user_id: Optional[str] = None,
) -> List[DailyMetricRecord] | List[IndividualRecord]:
    """Normalize a raw batch into the storage shape for ``mode``."""
    if mode == SyncMode.INDIVIDUAL_RECORDS:
        records, _ = normalize_individual(
            raw_records, mapping, project_id, source, user_id, strict=True
        )
        return records
    return normalize_daily(raw_records, mapping, project_id, source, user_id)


# ─────────────────────────────────────────────
# INDIVIDUAL → DAILY ROLL-UP
# ─────────────────────────────────────────────


def individual_values(record: IndividualRecord) -> Dict[str, Any]:
    """Metric values one individual record contributes to its daily aggregate."""
    data = record.record_data or {}
    if data.get("_origin") == CONVERTED_ORIGIN:
        return {**data.get("metrics", {}), **data.get("extra", {})}

    values: Dict[str, Any] = {
        key: value
        for key, value in data.items()
        if not key.startswith("_")
        and isinstance(value, (int, float))
        and not isinstance(value, bool)
    }
    if record.amount is not None and not (_MONEY_METRICS & values.keys()):
        values["revenue"] = record.amount
    values[f"{record.record_type}_count"] = 1
    return values


def aggregate_individual_records(
    records: Iterable[IndividualRecord],
    project_id: str,
    user_id: Optional[str] = None,
) -> Tuple[List[DailyMetricRecord], Set[str]]:
    """Roll individual records up into one daily row per (date, source).

    Returns the daily rows and the set of record types that were merged.
    """
    buckets: Dict[Tuple[date, str], MetricBucket] = defaultdict(MetricBucket)
    record_types: Set[str] = set()
    for record in sorted(records, key=lambda r: (r.date, r.record_id)):
        buckets[(record.date, record.source)].add_row(individual_values(record))
        record_types.add(record.record_type)

    daily = [
        build_daily_record(project_id, source, day, bucket.finalize(), user_id)
        for (day, source), bucket in sorted(buckets.items())
    ]
    return daily, record_types
