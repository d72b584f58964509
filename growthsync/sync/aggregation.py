"""GrowthSync — Per-field aggregation.

Every place that combines metric rows (rows sharing a date inside one fetch,
chunk results inside a range sync, individual records rolled up into daily
aggregates) goes through ``MetricBucket`` so they all follow the same rule
table from the metric registry:

    SUM    counts, spend, revenue, unknown numeric fields
    AVG    rates reported without their inputs
    LAST   point-in-time fields, unknown text fields
    MAX / MIN
    RATIO  recomputed from the merged numerator / denominator

Buckets only keep associative state (total, count, last, max, min), so merging
two buckets gives the same answer as adding all their rows to one bucket.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from growthsync.core.errors import ValidationError
from growthsync.core.metric_registry import (
    METRICS,
    RATE_METRICS,
    AggregationRule,
    rule_for,
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class _Accumulator:
    total: float = 0.0
    count: int = 0
    last: Any = None
    max: Optional[float] = None
    min: Optional[float] = None

    def add(self, value: Any) -> None:
        self.last = value
        if not _is_number(value):
            return
        self.total += value
        self.count += 1
        self.max = value if self.max is None else max(self.max, value)
        self.min = value if self.min is None else min(self.min, value)

    def merged(self, later: "_Accumulator") -> "_Accumulator":
        """Combine with an accumulator whose rows come after this one."""
        return _Accumulator(
            total=self.total + later.total,
            count=self.count + later.count,
            last=later.last if later.last is not None else self.last,
            max=_pick(max, self.max, later.max),
            min=_pick(min, self.min, later.min),
        )


def _pick(fn, a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return fn(a, b)


@dataclass
class MetricBucket:
    """Running aggregate for one group of rows (one day, one chunk, one range)."""

    fields: Dict[str, _Accumulator] = field(default_factory=dict)
    row_count: int = 0

    def add_row(self, values: Dict[str, Any]) -> None:
        self.row_count += 1
        for name, value in values.items():
            if value is None:
                continue
            self.fields.setdefault(name, _Accumulator()).add(value)

    def merge(self, later: "MetricBucket") -> "MetricBucket":
        """Return a new bucket; ``later`` wins for LAST fields."""
        names = list(self.fields) + [n for n in later.fields if n not in self.fields]
        merged: Dict[str, _Accumulator] = {}
        for name in names:
            left = self.fields.get(name, _Accumulator())
            right = later.fields.get(name, _Accumulator())
            merged[name] = left.merged(right)
        return MetricBucket(fields=merged, row_count=self.row_count + later.row_count)

    def finalize(self) -> Dict[str, Any]:
        """Resolve every field to a single value using its aggregation rule."""
        result: Dict[str, Any] = {}
        for name, acc in self.fields.items():
            if name in RATE_METRICS:
                continue
            rule = rule_for(name, acc.last)
            value = _resolve(rule, acc)
            if value is None:
                continue
            metric = METRICS.get(name)
            if metric is not None and metric.is_count and _is_number(value):
                value = int(round(value))
            result[name] = value

        for name in RATE_METRICS:
            value = self._ratio(name, result)
            if value is not None:
                result[name] = value
        return result

    def _ratio(self, name: str, resolved: Dict[str, Any]) -> Optional[float]:
        metric = METRICS[name]
        numerator = resolved.get(metric.numerator)
        denominator = resolved.get(metric.denominator)
        if _is_number(numerator) and _is_number(denominator):
            if denominator == 0:
                return 0.0
            return numerator / denominator * metric.scale
        # Inputs unavailable: fall back to the mean of what the source reported
        acc = self.fields.get(name)
        if acc is None or acc.count == 0:
            return None
        return acc.total / acc.count


def _resolve(rule: AggregationRule, acc: _Accumulator) -> Any:
    if rule == AggregationRule.LAST:
        return acc.last
    if acc.count == 0:
        # Non-numeric value under a numeric rule keeps the raw text
        return acc.last
    if rule == AggregationRule.SUM:
        return acc.total
    if rule == AggregationRule.AVG:
        return acc.total / acc.count
    if rule == AggregationRule.MAX:
        return acc.max
    if rule == AggregationRule.MIN:
        return acc.min
    return acc.total


def aggregate_rows(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Aggregate a flat list of value dicts into one finalized dict."""
    bucket = MetricBucket()
    for values in rows:
        bucket.add_row(values)
    return bucket.finalize()


# ─────────────────────────────────────────────
# INVALID ROWS
# ─────────────────────────────────────────────


@dataclass
class RowIssues:
    """Rows that could not be normalized, keyed by row reference.

    The reference is the source's own row id (``Jan Ads!5`` for a sheet tab)
    when it has one, so rows from different tabs never collide and a row
    returned by several chunk fetches is reported once.
    """

    rows: Dict[str, Tuple[Optional[int], str]] = field(default_factory=dict)

    def add(self, ref: str, row_index: Optional[int], message: str) -> None:
        if ref in self.rows:
            index, existing = self.rows[ref]
            if message not in existing.split("; "):
                self.rows[ref] = (index, f"{existing}; {message}")
        else:
            self.rows[ref] = (row_index, message)

    def add_row(self, external_id: Optional[str], row_index: Optional[int], message: str) -> None:
        ref = external_id or (str(row_index) if row_index is not None else "?")
        self.add(ref, row_index, message)

    def merge(self, later: "RowIssues") -> "RowIssues":
        merged = RowIssues(dict(self.rows))
        for ref, (index, message) in later.rows.items():
            merged.add(ref, index, message)
        return merged

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def row_indices(self) -> List[int]:
        return sorted(index for index, _ in self.rows.values() if index is not None)

    @property
    def problems(self) -> Dict[str, str]:
        return {ref: message for ref, (_, message) in self.rows.items()}

    def to_error(self, what: str = "row(s) could not be normalized") -> Optional[ValidationError]:
        if not self.rows:
            return None
        return ValidationError(
            f"{len(self.rows)} {what}",
            row_indices=self.row_indices,
            problems=self.problems,
        )


# ─────────────────────────────────────────────
# RANGE AGGREGATE: what the chunker returns
# ─────────────────────────────────────────────


@dataclass
class AggregateMetrics:
    """Per-day buckets plus range totals for one source over ``[start, end]``."""

    start: date
    end: date
    days: Dict[date, MetricBucket] = field(default_factory=dict)
    chunk_count: int = 1
    raw_row_count: int = 0
    issues: RowIssues = field(default_factory=RowIssues)

    @classmethod
    def from_rows(
        cls,
        start: date,
        end: date,
        rows: Iterable[Tuple[date, Dict[str, Any]]],
        issues: Optional[RowIssues] = None,
    ) -> "AggregateMetrics":
        agg = cls(start=start, end=end, issues=issues or RowIssues())
        for day, values in rows:
            agg.days.setdefault(day, MetricBucket()).add_row(values)
            agg.raw_row_count += 1
        return agg

    @classmethod
    def empty(cls, start: date, end: date) -> "AggregateMetrics":
        return cls(start=start, end=end)

    def merge(self, later: "AggregateMetrics") -> "AggregateMetrics":
        days = dict(self.days)
        for day, bucket in later.days.items():
            days[day] = days[day].merge(bucket) if day in days else bucket
        return AggregateMetrics(
            start=min(self.start, later.start),
            end=max(self.end, later.end),
            days=days,
            chunk_count=self.chunk_count + later.chunk_count,
            raw_row_count=self.raw_row_count + later.raw_row_count,
            issues=self.issues.merge(later.issues),
        )

    @classmethod
    def merge_all(cls, parts: List["AggregateMetrics"]) -> "AggregateMetrics":
        """Merge chunk results in chunk date order, whatever order they finished in."""
        if not parts:
            raise ValueError("merge_all needs at least one part")
        ordered = sorted(parts, key=lambda p: p.start)
        merged = ordered[0]
        for part in ordered[1:]:
            merged = merged.merge(part)
        return merged

    def daily_values(self) -> Dict[date, Dict[str, Any]]:
        return {day: self.days[day].finalize() for day in sorted(self.days)}

    def total_bucket(self) -> MetricBucket:
        total = MetricBucket()
        for day in sorted(self.days):
            total = total.merge(self.days[day])
        return total

    @property
    def totals(self) -> Dict[str, Any]:
        return self.total_bucket().finalize()
