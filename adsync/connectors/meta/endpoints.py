"""ADSYNC — Meta API Endpoints.

Fetch functions for each Meta Marketing API resource the sync walks.
Collection fetches return one ``Page`` at a time; draining them is the
paginator's job, so every page goes through the retry controller.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

from adsync.config import settings
from adsync.connectors.meta.client import MetaClient
from adsync.core.logging import get_logger
from adsync.sync.paginator import Page

logger = get_logger("meta.endpoints")

# Default fields requested from Meta
ACCOUNT_FIELDS = [
    "name",
    "account_status",
    "currency",
    "amount_spent",
    "balance",
    "spend_cap",
    "timezone_name",
    "business_country_code",
    "disable_reason",
    "is_prepay_account",
]

INSIGHT_FIELDS = [
    "impressions",
    "clicks",
    "reach",
    "spend",
    "cpc",
    "cpm",
    "ctr",
    "frequency",
    "cost_per_unique_click",
    "actions",
    "action_values",
    "cost_per_action_type",
    "website_purchase_roas",
]

DAILY_INSIGHT_FIELDS = ["impressions", "clicks", "reach", "spend", "actions"]

CAMPAIGN_FIELDS = [
    "id",
    "name",
    "status",
    "configured_status",
    "effective_status",
    "objective",
    "buying_type",
    "bid_strategy",
    "special_ad_categories",
    "daily_budget",
    "lifetime_budget",
    "budget_remaining",
    "spend_cap",
    "promoted_object",
    "pacing_type",
    "start_time",
    "stop_time",
    "updated_time",
]

ADSET_FIELDS = [
    "id",
    "name",
    "campaign_id",
    "status",
    "configured_status",
    "effective_status",
    "targeting",
    "billing_event",
    "optimization_goal",
    "bid_strategy",
    "bid_amount",
    "attribution_spec",
    "promoted_object",
    "pacing_type",
    "destination_type",
    "is_dynamic_creative",
    "learning_stage_info",
    "daily_budget",
    "lifetime_budget",
    "budget_remaining",
    "start_time",
    "end_time",
    "updated_time",
]

AD_FIELDS = [
    "id",
    "name",
    "adset_id",
    "campaign_id",
    "status",
    "configured_status",
    "effective_status",
    "creative",
    "tracking_specs",
    "conversion_specs",
    "tracking_and_conversion_specs",
    "preview_shareable_link",
    "updated_time",
]

CREATIVE_FIELDS = [
    "id",
    "object_type",
    "thumbnail_url",
    "image_url",
    "url_tags",
    "template_url",
    "instagram_permalink_url",
    "effective_object_story_id",
    "object_story_spec",
    "asset_feed_spec",
]


def account_path(account_id: str) -> str:
    """Graph node for an ad account (``act_<id>``)."""
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def updated_since_filter(updated_since: Optional[date]) -> Optional[List[Dict[str, Any]]]:
    """``filtering`` clause limiting a collection to recently modified entities."""
    if updated_since is None:
        return None
    start = datetime.combine(updated_since, time.min, tzinfo=timezone.utc)
    return [
        {
            "field": "updated_time",
            "operator": "GREATER_THAN",
            "value": int(start.timestamp()),
        }
    ]


class MetaEndpoints:
    """Typed entry points onto the Graph API for the sync walker."""

    def __init__(self, client: MetaClient):
        self.client = client

    # ── Account ──

    async def fetch_account(self, account_id: str) -> Dict[str, Any]:
        """Fetch ad account attributes."""
        return await self.client.read(account_path(account_id), ACCOUNT_FIELDS)

    # ── Insights ──

    async def fetch_insights(
        self, object_id: str, since: str, until: str, level: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch the single aggregated insight record for a date range.

        Returns None when Meta has no delivery for the window.
        """
        node = account_path(object_id) if level == "account" else object_id
        rows = await self.client.get_insights(
            node,
            INSIGHT_FIELDS,
            {"time_range": {"since": since, "until": until}, "level": level},
        )
        return rows[0] if rows else None

    async def fetch_daily_insights(
        self, account_id: str, day: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch one day of account-level totals."""
        rows = await self.client.get_insights(
            account_path(account_id),
            DAILY_INSIGHT_FIELDS,
            {
                "time_range": {"since": day, "until": day},
                "level": "account",
                "time_increment": 1,
            },
        )
        return rows[0] if rows else None

    # ── Structure Endpoints (Campaigns, Adsets, Ads) ──

    async def fetch_campaigns_page(
        self,
        account_id: str,
        after: Optional[str] = None,
        updated_since: Optional[date] = None,
    ) -> Page:
        payload = await self.client.get_edge(
            account_path(account_id),
            "campaigns",
            CAMPAIGN_FIELDS,
            {
                "limit": settings.page_limit,
                "after": after,
                "filtering": updated_since_filter(updated_since),
            },
        )
        return Page.from_graph(payload)

    async def fetch_adsets_page(
        self,
        campaign_id: str,
        after: Optional[str] = None,
        updated_since: Optional[date] = None,
    ) -> Page:
        payload = await self.client.get_edge(
            campaign_id,
            "adsets",
            ADSET_FIELDS,
            {
                "limit": settings.page_limit,
                "after": after,
                "filtering": updated_since_filter(updated_since),
            },
        )
        return Page.from_graph(payload)

    async def fetch_ads_page(
        self,
        ad_set_id: str,
        after: Optional[str] = None,
        updated_since: Optional[date] = None,
    ) -> Page:
        payload = await self.client.get_edge(
            ad_set_id,
            "ads",
            AD_FIELDS,
            {
                "limit": settings.page_limit,
                "after": after,
                "filtering": updated_since_filter(updated_since),
            },
        )
        return Page.from_graph(payload)

    # ── Creative ──

    async def fetch_creative(self, creative_id: str) -> Dict[str, Any]:
        """Direct creative lookup by id."""
        return await self.client.read(creative_id, CREATIVE_FIELDS)

    async def fetch_creatives_page(self, account_id: str, limit: int = 1) -> Page:
        """A small page of the account's ad creatives (permission check)."""
        payload = await self.client.get_edge(
            account_path(account_id), "adcreatives", ["id", "name"], {"limit": limit}
        )
        return Page.from_graph(payload)
