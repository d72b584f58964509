"""GrowthSync — Unified Metric Registry.

Defines the canonical per-day metric set, how each metric is classified, and
the rule used when several rows (same day, several chunks, several individual
records) collapse into one value. Every connector maps into these names.
"""

from enum import Enum
from typing import Dict, Optional, Tuple


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: impressions, clicks, reach
    COST = "cost"  # Monetary: spend
    REVENUE = "revenue"  # Income: revenue, deal value
    RATE = "rate"  # Ratios: ctr, cpc, roas
    PIPELINE = "pipeline"  # CRM counters: appointments, deals
    POINT_IN_TIME = "point_in_time"  # Snapshot values: budget


class AggregationRule(str, Enum):
    """How values for the same metric are combined."""

    SUM = "sum"
    AVG = "avg"
    LAST = "last"
    MAX = "max"
    MIN = "min"
    RATIO = "ratio"  # recomputed from merged numerator / denominator


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self,
        name: str,
        metric_type: MetricType,
        unit: str = "",
        description: str = "",
        rule: AggregationRule = AggregationRule.SUM,
        numerator: Optional[str] = None,
        denominator: Optional[str] = None,
        scale: float = 1.0,
        aliases: Tuple[str, ...] = (),
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description
        self.rule = rule
        self.numerator = numerator
        self.denominator = denominator
        self.scale = scale
        self.aliases = aliases

    @property
    def is_count(self) -> bool:
        return self.unit == "count"

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value}, {self.rule.value})>"


def _count(name: str, description: str, metric_type: MetricType = MetricType.VOLUME,
           aliases: Tuple[str, ...] = ()) -> MetricDefinition:
    return MetricDefinition(name, metric_type, "count", description, aliases=aliases)


def _ratio(name: str, numerator: str, denominator: str, unit: str, description: str,
           scale: float = 1.0, aliases: Tuple[str, ...] = ()) -> MetricDefinition:
    return MetricDefinition(
        name,
        MetricType.RATE,
        unit,
        description,
        rule=AggregationRule.RATIO,
        numerator=numerator,
        denominator=denominator,
        scale=scale,
        aliases=aliases,
    )


# ─────────────────────────────────────────────
# CANONICAL METRICS: one column each on DailyMetricRecord
# ─────────────────────────────────────────────

METRICS: Dict[str, MetricDefinition] = {
    # Volume
    "impressions": _count("impressions", "Number of times ad was shown"),
    "reach": _count("reach", "Unique users who saw ad"),
    "clicks": _count("clicks", "Total clicks", aliases=("link_clicks",)),
    "outbound_clicks": _count("outbound_clicks", "Clicks leading off platform"),
    "conversions": _count("conversions", "Conversions / purchases", aliases=("purchases",)),
    # Cost
    "spend": MetricDefinition(
        "spend", MetricType.COST, "currency", "Total amount spent",
        aliases=("amount_spent", "ad_spend", "cost"),
    ),
    # Revenue
    "revenue": MetricDefinition(
        "revenue", MetricType.REVENUE, "currency", "Attributed revenue",
        aliases=("purchase_value", "conversion_values", "sales"),
    ),
    # CRM pipeline
    "appointments_total": _count("appointments_total", "All appointments", MetricType.PIPELINE,
                                 aliases=("appointments", "calls_booked")),
    "appointments_scheduled": _count("appointments_scheduled", "Booked / confirmed", MetricType.PIPELINE),
    "appointments_completed": _count("appointments_completed", "Showed", MetricType.PIPELINE,
                                     aliases=("calls_taken",)),
    "appointments_no_show": _count("appointments_no_show", "No-shows", MetricType.PIPELINE),
    "appointments_cancelled": _count("appointments_cancelled", "Cancelled", MetricType.PIPELINE),
    "deals_total": _count("deals_total", "All opportunities", MetricType.PIPELINE),
    "deals_won": _count("deals_won", "Won opportunities", MetricType.PIPELINE, aliases=("closes",)),
    "deals_lost": _count("deals_lost", "Lost / abandoned opportunities", MetricType.PIPELINE),
    "deals_open": _count("deals_open", "Open opportunities", MetricType.PIPELINE),
    "deal_value": MetricDefinition(
        "deal_value", MetricType.REVENUE, "currency", "Monetary value of all opportunities",
    ),
    "won_value": MetricDefinition(
        "won_value", MetricType.REVENUE, "currency", "Monetary value of won opportunities",
    ),
    # Point-in-time
    "daily_budget": MetricDefinition(
        "daily_budget", MetricType.POINT_IN_TIME, "currency", "Budget in effect at day end",
        rule=AggregationRule.LAST,
    ),
    # Rates: never averaged across rows when the inputs are known
    "ctr": _ratio("ctr", "clicks", "impressions", "%", "Click-through rate", scale=100.0,
                  aliases=("outbound_ctr", "outbound_clicks_ctr")),
    "cpc": _ratio("cpc", "spend", "clicks", "currency", "Cost per click"),
    "cpm": _ratio("cpm", "spend", "impressions", "currency", "Cost per 1000 impressions",
                  scale=1000.0),
    "frequency": _ratio("frequency", "impressions", "reach", "avg",
                        "Average times ad shown per user"),
    "conversion_rate": _ratio("conversion_rate", "conversions", "clicks", "%",
                              "Conversions per click", scale=100.0),
    "cost_per_conversion": _ratio("cost_per_conversion", "spend", "conversions", "currency",
                                  "Cost per conversion", aliases=("cpa",)),
    "roas": _ratio("roas", "revenue", "spend", "ratio", "Return on ad spend",
                   aliases=("purchase_roas",)),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALIASES: Dict[str, str] = {
    alias: metric.name for metric in METRICS.values() for alias in metric.aliases
}

COUNT_METRICS = frozenset(name for name, m in METRICS.items() if m.is_count)
RATE_METRICS = frozenset(
    name for name, m in METRICS.items() if m.rule == AggregationRule.RATIO
)


def canonical_name(name: str) -> str:
    """Resolve an alias (``amount_spent``) to its canonical key (``spend``).

    Known metrics match case-insensitively; any other name is kept as written.
    """
    text = name.strip()
    key = text.lower()
    if key in ALIASES:
        return ALIASES[key]
    return key if key in METRICS else text


def get_metric(name: str) -> MetricDefinition | None:
    """Look up a metric by canonical name or alias."""
    return METRICS.get(canonical_name(name))


def metrics_by_type(metric_type: MetricType) -> list[MetricDefinition]:
    """Return all metrics of a given type."""
    return [m for m in METRICS.values() if m.metric_type == metric_type]


def rule_for(name: str, value: object = None) -> AggregationRule:
    """Aggregation rule for a name; unknown numeric fields sum, other values keep the last."""
    metric = get_metric(name)
    if metric is not None:
        return metric.rule
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return AggregationRule.SUM
    return AggregationRule.LAST
