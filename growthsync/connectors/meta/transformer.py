"""GrowthSync — Meta insight row → raw fields.

Flattens one insights row (direct fields plus the ``actions`` /
``action_values`` lists) into a flat field dict named with registry keys.
"""

from typing import Any, Dict, Optional

# Direct-map fields from the insight response
DIRECT_METRICS = [
    "impressions",
    "reach",
    "clicks",
    "spend",
    "frequency",
    "ctr",
    "cpc",
    "cpm",
]

PURCHASE_ACTIONS = ("purchase", "offsite_conversion.fb_pixel_purchase", "omni_purchase")


def _safe_float(value: Any) -> Optional[float]:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _extract_action_metrics(row: Dict[str, Any]) -> Dict[str, float]:
    """Extract action-based metrics (outbound clicks, conversions, revenue)."""
    metrics: Dict[str, float] = {}
    for action in row.get("actions") or []:
        action_type = action.get("action_type", "")
        value = _safe_float(action.get("value"))
        if value is None:
            continue
        if action_type == "link_click":
            metrics["outbound_clicks"] = value
        elif action_type in PURCHASE_ACTIONS:
            # Pixel and omni purchases overlap; keep the largest report
            metrics["conversions"] = max(metrics.get("conversions", 0.0), value)

    for av in row.get("action_values") or []:
        if av.get("action_type") in PURCHASE_ACTIONS:
            value = _safe_float(av.get("value"))
            if value is not None:
                metrics["revenue"] = max(metrics.get("revenue", 0.0), value)
    return metrics


def entity_id(row: Dict[str, Any], level: str) -> str:
    key = {"campaign": "campaign_id", "adset": "adset_id", "ad": "ad_id"}.get(level, "account_id")
    return str(row.get(key, ""))


def flatten_insight_row(row: Dict[str, Any]) -> Dict[str, float]:
    """All metric fields of one insight row."""
    fields: Dict[str, float] = {}
    for name in DIRECT_METRICS:
        value = _safe_float(row.get(name))
        if value is not None:
            fields[name] = value
    fields.update(_extract_action_metrics(row))
    return fields
