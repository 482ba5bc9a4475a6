"""ADSYNC — Insight Metric Registry.

Defines the insight fields mirrored from Meta and how each one is coerced.
Meta returns every metric as a string (or omits it entirely), so the
transformer looks a field up here to decide between a zero fallback
(counts) and a NULL fallback (currency, where zero is not "unknown").
"""

from enum import Enum
from typing import Dict


class MetricType(str, Enum):
    """How a metric is categorised."""

    COUNT = "count"  # Raw counts: impressions, clicks, reach
    CURRENCY = "currency"  # Monetary: spend, budgets
    RATE = "rate"  # Rates reported by Meta: ctr, cpc, frequency
    DERIVED = "derived"  # Computed locally: roas, cost_per_conversion


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self, name: str, metric_type: MetricType, unit: str = "", description: str = ""
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description

    @property
    def zero_when_missing(self) -> bool:
        """Counts fall back to 0; everything else falls back to NULL."""
        return self.metric_type == MetricType.COUNT

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# META INSIGHT METRICS — Canonical Registry
# ─────────────────────────────────────────────

META_METRICS: Dict[str, MetricDefinition] = {
    # Counts
    "impressions": MetricDefinition(
        "impressions", MetricType.COUNT, "count", "Number of times ad was shown"
    ),
    "reach": MetricDefinition(
        "reach", MetricType.COUNT, "count", "Unique users who saw ad"
    ),
    "clicks": MetricDefinition("clicks", MetricType.COUNT, "count", "Total clicks"),
    # Currency
    "spend": MetricDefinition(
        "spend", MetricType.CURRENCY, "currency", "Total amount spent"
    ),
    "cost_per_unique_click": MetricDefinition(
        "cost_per_unique_click", MetricType.CURRENCY, "currency", "Cost per unique click"
    ),
    # Rates (from Meta directly)
    "ctr": MetricDefinition("ctr", MetricType.RATE, "%", "Click-through rate"),
    "cpc": MetricDefinition("cpc", MetricType.RATE, "currency", "Cost per click"),
    "cpm": MetricDefinition(
        "cpm", MetricType.RATE, "currency", "Cost per 1000 impressions"
    ),
    "frequency": MetricDefinition(
        "frequency", MetricType.RATE, "avg", "Average times ad shown per user"
    ),
}


# ─────────────────────────────────────────────
# DERIVED METRICS — Computed by the transformer
# ─────────────────────────────────────────────

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "roas": MetricDefinition("roas", MetricType.DERIVED, "ratio", "Return on ad spend"),
    "cost_per_conversion": MetricDefinition(
        "cost_per_conversion",
        MetricType.DERIVED,
        "currency",
        "Spend / total action count",
    ),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALL_METRICS = {**META_METRICS, **DERIVED_METRICS}

# Purchase-type actions used for revenue / ROAS, in priority order
PURCHASE_ACTION_TYPES = (
    "purchase",
    "omni_purchase",
    "offsite_conversion.fb_pixel_purchase",
)


def get_metric(name: str) -> MetricDefinition | None:
    """Look up a metric by name."""
    return ALL_METRICS.get(name)
