"""ADSYNC — Mirrored Entity & Sync Bookkeeping Tables.

One row per external Meta id for each level of the hierarchy
(account → campaign → ad set → ad), plus the append-only logging tables
(API call metrics, sync run logs, API pings) and the overwrite-only
rate-limit snapshot.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# SHARED COLUMN BLOCKS
# ─────────────────────────────────────────────


class InsightMetrics(SQLModel):
    """Metric block shared by campaigns, ad sets and ads.

    Counts default to 0. Currency and rates are NULL when unknown or
    not applicable (zero denominator).
    """

    impressions: int = Field(default=0)
    clicks: int = Field(default=0)
    reach: int = Field(default=0)
    spend: Optional[float] = Field(default=None)
    cpc: Optional[float] = Field(default=None)
    cpm: Optional[float] = Field(default=None)
    ctr: Optional[float] = Field(default=None)
    roas: Optional[float] = Field(default=None)
    conversions: Optional[Dict[str, float]] = Field(default=None, sa_type=JSON)
    cost_per_conversion: Optional[float] = Field(default=None)
    insights_start_date: Optional[str] = Field(default=None)
    insights_end_date: Optional[str] = Field(default=None)


class SyncTimestamps(SQLModel):
    """Bookkeeping stamps. ``created_at`` is only written on insert."""

    last_updated: datetime = Field(default_factory=utcnow, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# HIERARCHY TABLES
# ─────────────────────────────────────────────


class MetaAccountInsights(SyncTimestamps, table=True):
    """Ad account attributes plus account-level insight totals.

    Exactly one row per ``account_id``; its ``last_updated`` drives the
    freshness gate for the whole account.
    """

    __tablename__ = "meta_account_insights"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True, unique=True, description="act_<id>")
    name: str = Field(default="")
    account_status: Optional[int] = Field(default=None)
    currency: Optional[str] = Field(default=None)
    amount_spent: Optional[float] = Field(default=None)
    balance: Optional[float] = Field(default=None)
    spend_cap: Optional[float] = Field(default=None)
    timezone_name: Optional[str] = Field(default=None)
    business_country_code: Optional[str] = Field(default=None)
    disable_reason: Optional[int] = Field(default=None)
    is_prepay_account: Optional[bool] = Field(default=None)

    insights_start_date: Optional[str] = Field(default=None)
    insights_end_date: Optional[str] = Field(default=None)
    total_impressions: int = Field(default=0)
    total_clicks: int = Field(default=0)
    total_reach: int = Field(default=0)
    total_spend: Optional[float] = Field(default=None)
    average_cpc: Optional[float] = Field(default=None)
    average_cpm: Optional[float] = Field(default=None)
    average_ctr: Optional[float] = Field(default=None)
    average_frequency: Optional[float] = Field(default=None)
    roas: Optional[float] = Field(default=None)
    total_conversions: Optional[Dict[str, float]] = Field(default=None, sa_type=JSON)
    actions: Optional[List[Any]] = Field(default=None, sa_type=JSON)
    action_values: Optional[List[Any]] = Field(default=None, sa_type=JSON)
    cost_per_action_type: Optional[List[Any]] = Field(default=None, sa_type=JSON)

    is_new_account: bool = Field(
        default=False, description="Filled with the wide first-sync window"
    )


class MetaCampaign(InsightMetrics, SyncTimestamps, table=True):
    """Campaign structure + insights."""

    __tablename__ = "meta_campaigns"

    id: Optional[int] = Field(default=None, primary_key=True)
    campaign_id: str = Field(index=True, unique=True)
    account_id: str = Field(index=True)
    name: str = Field(default="")
    status: Optional[str] = Field(default=None)
    configured_status: Optional[str] = Field(default=None)
    effective_status: Optional[str] = Field(default=None)
    objective: Optional[str] = Field(default=None)
    buying_type: Optional[str] = Field(default=None)
    bid_strategy: Optional[str] = Field(default=None)
    special_ad_categories: Optional[List[str]] = Field(default=None, sa_type=JSON)
    daily_budget: Optional[float] = Field(default=None)
    lifetime_budget: Optional[float] = Field(default=None)
    budget_remaining: Optional[float] = Field(default=None)
    spend_cap: Optional[float] = Field(default=None)
    promoted_object: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    pacing_type: Optional[List[str]] = Field(default=None, sa_type=JSON)
    start_time: Optional[datetime] = Field(default=None)
    end_time: Optional[datetime] = Field(default=None)
    platform_updated_time: Optional[datetime] = Field(default=None)


class MetaAdSet(InsightMetrics, SyncTimestamps, table=True):
    """Ad set structure, targeting/bidding configuration + insights."""

    __tablename__ = "meta_ad_sets"

    id: Optional[int] = Field(default=None, primary_key=True)
    ad_set_id: str = Field(index=True, unique=True)
    campaign_id: str = Field(index=True)
    account_id: str = Field(index=True)
    name: str = Field(default="")
    status: Optional[str] = Field(default=None)
    configured_status: Optional[str] = Field(default=None)
    effective_status: Optional[str] = Field(default=None)
    targeting: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    billing_event: Optional[str] = Field(default=None)
    optimization_goal: Optional[str] = Field(default=None)
    bid_strategy: Optional[str] = Field(default=None)
    bid_amount: Optional[float] = Field(default=None)
    attribution_spec: Optional[List[Any]] = Field(default=None, sa_type=JSON)
    promoted_object: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    pacing_type: Optional[List[str]] = Field(default=None, sa_type=JSON)
    destination_type: Optional[str] = Field(default=None)
    is_dynamic_creative: Optional[bool] = Field(default=None)
    learning_stage_info: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    daily_budget: Optional[float] = Field(default=None)
    lifetime_budget: Optional[float] = Field(default=None)
    budget_remaining: Optional[float] = Field(default=None)
    start_time: Optional[datetime] = Field(default=None)
    end_time: Optional[datetime] = Field(default=None)
    platform_updated_time: Optional[datetime] = Field(default=None)


class MetaAd(InsightMetrics, SyncTimestamps, table=True):
    """Ad structure, creative enrichment + insights."""

    __tablename__ = "meta_ads"

    id: Optional[int] = Field(default=None, primary_key=True)
    ad_id: str = Field(index=True, unique=True)
    ad_set_id: str = Field(index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)
    account_id: str = Field(index=True)
    name: str = Field(default="")
    status: Optional[str] = Field(default=None)
    configured_status: Optional[str] = Field(default=None)
    effective_status: Optional[str] = Field(default=None)
    creative: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    creative_id: Optional[str] = Field(default=None)
    preview_url: Optional[str] = Field(default=None)
    effective_object_story_id: Optional[str] = Field(default=None)
    tracking_specs: Optional[List[Any]] = Field(default=None, sa_type=JSON)
    conversion_specs: Optional[List[Any]] = Field(default=None, sa_type=JSON)
    tracking_and_conversion_specs: Optional[Dict[str, Any]] = Field(
        default=None, sa_type=JSON
    )
    object_story_spec: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    # Creative enrichment (NULL when the creative lookup is unavailable)
    thumbnail_url: Optional[str] = Field(default=None)
    creative_type: Optional[str] = Field(default=None)
    url_tags: Optional[str] = Field(default=None)
    template_url: Optional[str] = Field(default=None)
    instagram_permalink_url: Optional[str] = Field(default=None)
    asset_feed_spec: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    platform_updated_time: Optional[datetime] = Field(default=None)


class MetaDailyMetrics(SQLModel, table=True):
    """One day of account-level insight totals."""

    __tablename__ = "meta_daily_metrics"
    __table_args__ = (
        UniqueConstraint("account_id", "date", name="uq_daily_metric"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    date: str = Field(index=True, description="YYYY-MM-DD")
    impressions: int = Field(default=0)
    clicks: int = Field(default=0)
    reach: int = Field(default=0)
    spend: Optional[float] = Field(default=None)
    conversions: Optional[Dict[str, float]] = Field(default=None, sa_type=JSON)
    last_updated: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# OBSERVABILITY TABLES
# ─────────────────────────────────────────────


class MetaApiMetric(SQLModel, table=True):
    """One row per external call attempt. Insert-only."""

    __tablename__ = "meta_api_metrics"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    endpoint: str = Field(index=True)
    call_type: str = Field(default="READ")
    points_used: int = Field(default=1)
    success: bool = Field(default=True)
    error_code: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)
    timestamp: datetime = Field(default_factory=utcnow, index=True)


class MetaRateLimit(SQLModel, table=True):
    """Latest usage snapshot per (account, endpoint). Overwritten in place."""

    __tablename__ = "meta_rate_limits"
    __table_args__ = (
        UniqueConstraint("account_id", "endpoint", name="uq_rate_limit_endpoint"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    endpoint: str
    usage_percent: Optional[float] = Field(default=None)
    call_count: Optional[float] = Field(default=None)
    total_cputime: Optional[float] = Field(default=None)
    total_time: Optional[float] = Field(default=None)
    estimated_time_to_regain_access: Optional[float] = Field(default=None)
    business_use_case: Optional[str] = Field(default=None)
    reset_time_duration: Optional[float] = Field(default=None)
    tier: str = Field(default="development")
    last_updated: datetime = Field(default_factory=utcnow)


class MetaSyncLog(SQLModel, table=True):
    """Outcome of one batch run. Append-only, never read by the sync loop."""

    __tablename__ = "meta_sync_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(index=True, description="account_refresh | daily_metrics | weekly_details")
    date_range_start: Optional[str] = Field(default=None)
    date_range_end: Optional[str] = Field(default=None)
    total: int = Field(default=0)
    processed: int = Field(default=0)
    succeeded: int = Field(default=0)
    failed: int = Field(default=0)
    campaigns_updated: int = Field(default=0)
    ad_sets_updated: int = Field(default=0)
    ads_updated: int = Field(default=0)
    errors: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    success: bool = Field(default=True)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime = Field(default_factory=utcnow, index=True)


class MetaApiPing(SQLModel, table=True):
    """Outcome of one Marketing API permission and connectivity check."""

    __tablename__ = "meta_api_pings"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    successful: bool = Field(default=False)
    details: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    error: Optional[str] = Field(default=None)
    timestamp: datetime = Field(default_factory=utcnow, index=True)
