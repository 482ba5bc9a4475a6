"""ADSYNC — Typed Graph API Shapes.

Meta's responses are loosely shaped: fields are optional, numbers arrive as
strings, lists may be missing. These models give each entity kind an explicit
optional-field record so the transformer never pokes at raw dicts. Unknown
fields are kept (``extra="allow"``) but ignored downstream.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GraphModel(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class GraphAction(GraphModel):
    """One ``{action_type, value}`` pair from an insights action list."""

    action_type: str = ""
    value: Any = None


class GraphInsight(GraphModel):
    """Zero-or-one insight record for an entity and date range."""

    impressions: Any = None
    clicks: Any = None
    reach: Any = None
    spend: Any = None
    cpc: Any = None
    cpm: Any = None
    ctr: Any = None
    frequency: Any = None
    cost_per_unique_click: Any = None
    actions: List[GraphAction] = Field(default_factory=list)
    action_values: List[GraphAction] = Field(default_factory=list)
    cost_per_action_type: List[GraphAction] = Field(default_factory=list)
    website_purchase_roas: List[GraphAction] = Field(default_factory=list)
    date_start: Optional[str] = None
    date_stop: Optional[str] = None


class GraphAccount(GraphModel):
    id: Optional[str] = None
    name: str = ""
    account_status: Optional[int] = None
    currency: Optional[str] = None
    amount_spent: Any = None
    balance: Any = None
    spend_cap: Any = None
    timezone_name: Optional[str] = None
    business_country_code: Optional[str] = None
    disable_reason: Optional[int] = None
    is_prepay_account: Optional[bool] = None


class GraphCampaign(GraphModel):
    id: str
    name: str = ""
    status: Optional[str] = None
    configured_status: Optional[str] = None
    effective_status: Optional[str] = None
    objective: Optional[str] = None
    buying_type: Optional[str] = None
    bid_strategy: Optional[str] = None
    special_ad_categories: Optional[List[str]] = None
    daily_budget: Any = None
    lifetime_budget: Any = None
    budget_remaining: Any = None
    spend_cap: Any = None
    promoted_object: Optional[Dict[str, Any]] = None
    pacing_type: Optional[List[str]] = None
    start_time: Optional[str] = None
    stop_time: Optional[str] = None
    end_time: Optional[str] = None
    updated_time: Optional[str] = None


class GraphAdSet(GraphModel):
    id: str
    name: str = ""
    campaign_id: Optional[str] = None
    status: Optional[str] = None
    configured_status: Optional[str] = None
    effective_status: Optional[str] = None
    targeting: Optional[Dict[str, Any]] = None
    billing_event: Optional[str] = None
    optimization_goal: Optional[str] = None
    bid_strategy: Optional[str] = None
    bid_amount: Any = None
    attribution_spec: Optional[List[Any]] = None
    promoted_object: Optional[Dict[str, Any]] = None
    pacing_type: Optional[List[str]] = None
    destination_type: Optional[str] = None
    is_dynamic_creative: Optional[bool] = None
    learning_stage_info: Optional[Dict[str, Any]] = None
    daily_budget: Any = None
    lifetime_budget: Any = None
    budget_remaining: Any = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    updated_time: Optional[str] = None


class GraphCreativeRef(GraphModel):
    id: Optional[str] = None


class GraphAd(GraphModel):
    id: str
    name: str = ""
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    status: Optional[str] = None
    configured_status: Optional[str] = None
    effective_status: Optional[str] = None
    creative: Optional[GraphCreativeRef] = None
    tracking_specs: Optional[List[Any]] = None
    conversion_specs: Optional[List[Any]] = None
    tracking_and_conversion_specs: Optional[Dict[str, Any]] = None
    object_story_spec: Optional[Dict[str, Any]] = None
    preview_shareable_link: Optional[str] = None
    effective_object_story_id: Optional[str] = None
    updated_time: Optional[str] = None


class GraphCreative(GraphModel):
    id: Optional[str] = None
    object_type: Optional[str] = None
    thumbnail_url: Optional[str] = None
    image_url: Optional[str] = None
    url_tags: Optional[str] = None
    template_url: Optional[str] = None
    instagram_permalink_url: Optional[str] = None
    effective_object_story_id: Optional[str] = None
    asset_feed_spec: Optional[Dict[str, Any]] = None
    object_story_spec: Optional[Dict[str, Any]] = None
