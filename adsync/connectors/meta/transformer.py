"""ADSYNC — Meta Graph → Table Row Transformer.

Maps Meta's loosely shaped payloads onto the mirrored tables. Payloads are
validated into the typed Graph models first, then every metric is coerced
using the metric registry:

- counts parse to ``int`` and fall back to 0
- currency parses to ``float`` and falls back to None
- every ratio goes through ``safe_divide`` and is None when not applicable
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from adsync.core.logging import get_logger
from adsync.core.metric_registry import PURCHASE_ACTION_TYPES, get_metric
from adsync.models.graph_models import (
    GraphAccount,
    GraphAction,
    GraphAd,
    GraphAdSet,
    GraphCampaign,
    GraphCreative,
    GraphInsight,
)

logger = get_logger("meta.transformer")


# ── Numeric Coercion ──


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_count(value: Any) -> int:
    """Parse a count metric; missing or garbage means 0."""
    number = _finite(value)
    return int(number) if number is not None else 0


def parse_amount(value: Any) -> Optional[float]:
    """Parse a currency/rate value; missing or garbage means unknown (None)."""
    return _finite(value)


def parse_metric(name: str, value: Any) -> Any:
    """Coerce ``value`` according to the registry entry for ``name``."""
    definition = get_metric(name)
    if definition is not None and definition.zero_when_missing:
        return parse_count(value)
    return parse_amount(value)


def safe_divide(
    numerator: Any, denominator: Any, scale: float = 1.0
) -> Optional[float]:
    """``numerator / denominator * scale`` or None when not applicable."""
    num = _finite(numerator)
    den = _finite(denominator)
    if num is None or den is None or den == 0:
        return None
    result = num * scale / den
    return result if math.isfinite(result) else None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse Meta timestamps (``2024-05-01T10:00:00+0000``)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        logger.warning(f"Unparseable timestamp: {value!r}")
        return None


# ── Actions ──


def fold_actions(actions: Iterable[GraphAction]) -> Optional[Dict[str, float]]:
    """Fold Meta's ``[{action_type, value}]`` list into a keyed mapping."""
    folded: Dict[str, float] = {}
    for action in actions:
        value = _finite(action.value)
        if not action.action_type or value is None:
            continue
        folded[action.action_type] = folded.get(action.action_type, 0.0) + value
    return folded or None


def purchase_value(action_values: Iterable[GraphAction]) -> Optional[float]:
    """Revenue from the highest-priority purchase type Meta reported.

    The purchase types overlap (``omni_purchase`` already includes pixel
    purchases), so only one of them is counted.
    """
    by_type: Dict[str, float] = {}
    for action in action_values:
        value = _finite(action.value)
        if action.action_type in PURCHASE_ACTION_TYPES and value is not None:
            by_type[action.action_type] = by_type.get(action.action_type, 0.0) + value
    for action_type in PURCHASE_ACTION_TYPES:
        if action_type in by_type:
            return by_type[action_type]
    return None


def compute_roas(insight: GraphInsight, spend: Optional[float]) -> Optional[float]:
    """Meta's own purchase ROAS when reported, else revenue / spend."""
    for entry in insight.website_purchase_roas:
        reported = _finite(entry.value)
        if reported is not None:
            return reported
    return safe_divide(purchase_value(insight.action_values), spend)


def cost_per_conversion(
    spend: Optional[float], conversions: Optional[Dict[str, float]]
) -> Optional[float]:
    if not conversions:
        return None
    return safe_divide(spend, sum(conversions.values()))


# ── Metric Block ──


def metric_block(
    raw_insight: Optional[Dict[str, Any]],
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> Dict[str, Any]:
    """Shared insight columns for campaigns, ad sets and ads.

    A missing insight (no delivery, or the fetch timed out) yields zeroed
    counts and NULL rates.
    """
    insight = GraphInsight.model_validate(raw_insight or {})

    impressions = parse_metric("impressions", insight.impressions)
    clicks = parse_metric("clicks", insight.clicks)
    spend = parse_metric("spend", insight.spend)
    conversions = fold_actions(insight.actions)

    return {
        "impressions": impressions,
        "clicks": clicks,
        "reach": parse_metric("reach", insight.reach),
        "spend": spend,
        "ctr": safe_divide(clicks, impressions, 100),
        "cpc": safe_divide(spend, clicks),
        "cpm": safe_divide(spend, impressions, 1000),
        "roas": compute_roas(insight, spend),
        "conversions": conversions,
        "cost_per_conversion": cost_per_conversion(spend, conversions),
        "insights_start_date": insight.date_start or since,
        "insights_end_date": insight.date_stop or until,
    }


def _insight_columns(
    raw_insight: Optional[Dict[str, Any]],
    since: Optional[str],
    until: Optional[str],
) -> Dict[str, Any]:
    """Metric columns to write for an entity, empty when no insight came back.

    Structure-only passes and timed-out insight calls leave the stored
    metrics untouched; a new row falls back to the column defaults.
    """
    if raw_insight is None:
        return {}
    return metric_block(raw_insight, since, until)


# ── Entity Normalizers ──


def normalize_account(
    account_id: str,
    raw_account: Dict[str, Any],
    raw_insight: Optional[Dict[str, Any]],
    since: str,
    until: str,
    is_new_account: bool = False,
) -> Dict[str, Any]:
    """Account attributes merged with account-level insight totals.

    Without an insight record only the attributes are returned, so the
    stored totals and their window survive a timed-out insights call.
    """
    account = GraphAccount.model_validate(raw_account)
    row = {
        "account_id": account_id,
        "name": account.name,
        "account_status": account.account_status,
        "currency": account.currency,
        "amount_spent": parse_amount(account.amount_spent),
        "balance": parse_amount(account.balance),
        "spend_cap": parse_amount(account.spend_cap),
        "timezone_name": account.timezone_name,
        "business_country_code": account.business_country_code,
        "disable_reason": account.disable_reason,
        "is_prepay_account": account.is_prepay_account,
        "is_new_account": is_new_account,
    }
    if raw_insight is None:
        return row

    metrics = metric_block(raw_insight, since, until)
    insight = GraphInsight.model_validate(raw_insight)
    row.update(
        {
            "insights_start_date": since,
            "insights_end_date": until,
            "total_impressions": metrics["impressions"],
            "total_clicks": metrics["clicks"],
            "total_reach": metrics["reach"],
            "total_spend": metrics["spend"],
            "average_cpc": metrics["cpc"],
            "average_cpm": metrics["cpm"],
            "average_ctr": metrics["ctr"],
            "average_frequency": parse_metric("frequency", insight.frequency),
            "roas": metrics["roas"],
            "total_conversions": metrics["conversions"],
            "actions": [a.model_dump() for a in insight.actions] or None,
            "action_values": [a.model_dump() for a in insight.action_values] or None,
            "cost_per_action_type": [a.model_dump() for a in insight.cost_per_action_type]
            or None,
        }
    )
    return row


def normalize_campaign(
    raw_campaign: Dict[str, Any],
    account_id: str,
    raw_insight: Optional[Dict[str, Any]] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> Dict[str, Any]:
    campaign = GraphCampaign.model_validate(raw_campaign)
    return {
        "campaign_id": campaign.id,
        "account_id": account_id,
        "name": campaign.name,
        "status": campaign.status,
        "configured_status": campaign.configured_status,
        "effective_status": campaign.effective_status,
        "objective": campaign.objective,
        "buying_type": campaign.buying_type,
        "bid_strategy": campaign.bid_strategy,
        "special_ad_categories": campaign.special_ad_categories,
        "daily_budget": parse_amount(campaign.daily_budget),
        "lifetime_budget": parse_amount(campaign.lifetime_budget),
        "budget_remaining": parse_amount(campaign.budget_remaining),
        "spend_cap": parse_amount(campaign.spend_cap),
        "promoted_object": campaign.promoted_object,
        "pacing_type": campaign.pacing_type,
        "start_time": parse_datetime(campaign.start_time),
        # Campaigns report their end as stop_time
        "end_time": parse_datetime(campaign.stop_time or campaign.end_time),
        "platform_updated_time": parse_datetime(campaign.updated_time),
        **_insight_columns(raw_insight, since, until),
    }


def normalize_adset(
    raw_adset: Dict[str, Any],
    account_id: str,
    campaign_id: str,
    raw_insight: Optional[Dict[str, Any]] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> Dict[str, Any]:
    adset = GraphAdSet.model_validate(raw_adset)
    return {
        "ad_set_id": adset.id,
        "campaign_id": adset.campaign_id or campaign_id,
        "account_id": account_id,
        "name": adset.name,
        "status": adset.status,
        "configured_status": adset.configured_status,
        "effective_status": adset.effective_status,
        "targeting": adset.targeting,
        "billing_event": adset.billing_event,
        "optimization_goal": adset.optimization_goal,
        "bid_strategy": adset.bid_strategy,
        "bid_amount": parse_amount(adset.bid_amount),
        "attribution_spec": adset.attribution_spec,
        "promoted_object": adset.promoted_object,
        "pacing_type": adset.pacing_type,
        "destination_type": adset.destination_type,
        "is_dynamic_creative": adset.is_dynamic_creative,
        "learning_stage_info": adset.learning_stage_info,
        "daily_budget": parse_amount(adset.daily_budget),
        "lifetime_budget": parse_amount(adset.lifetime_budget),
        "budget_remaining": parse_amount(adset.budget_remaining),
        "start_time": parse_datetime(adset.start_time),
        "end_time": parse_datetime(adset.end_time),
        "platform_updated_time": parse_datetime(adset.updated_time),
        **_insight_columns(raw_insight, since, until),
    }


def creative_fields(raw_creative: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Enrichment columns from a creative lookup; all None when unavailable."""
    if not raw_creative:
        return {
            "thumbnail_url": None,
            "creative_type": None,
            "url_tags": None,
            "template_url": None,
            "instagram_permalink_url": None,
            "asset_feed_spec": None,
        }
    creative = GraphCreative.model_validate(raw_creative)
    return {
        "thumbnail_url": creative.thumbnail_url or creative.image_url,
        "creative_type": creative.object_type,
        "url_tags": creative.url_tags,
        "template_url": creative.template_url,
        "instagram_permalink_url": creative.instagram_permalink_url,
        "asset_feed_spec": creative.asset_feed_spec,
    }


def creative_id_of(raw_ad: Dict[str, Any]) -> Optional[str]:
    ad = GraphAd.model_validate(raw_ad)
    return ad.creative.id if ad.creative else None


def normalize_ad(
    raw_ad: Dict[str, Any],
    account_id: str,
    ad_set_id: str,
    campaign_id: Optional[str] = None,
    raw_insight: Optional[Dict[str, Any]] = None,
    raw_creative: Optional[Dict[str, Any]] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> Dict[str, Any]:
    ad = GraphAd.model_validate(raw_ad)
    enrichment = creative_fields(raw_creative)
    story_id = ad.effective_object_story_id
    story_spec = ad.object_story_spec
    if raw_creative:
        creative = GraphCreative.model_validate(raw_creative)
        story_id = story_id or creative.effective_object_story_id
        story_spec = story_spec or creative.object_story_spec

    return {
        "ad_id": ad.id,
        "ad_set_id": ad.adset_id or ad_set_id,
        "campaign_id": ad.campaign_id or campaign_id,
        "account_id": account_id,
        "name": ad.name,
        "status": ad.status,
        "configured_status": ad.configured_status,
        "effective_status": ad.effective_status,
        "creative": ad.creative.model_dump() if ad.creative else None,
        "creative_id": ad.creative.id if ad.creative else None,
        "preview_url": ad.preview_shareable_link,
        "effective_object_story_id": story_id,
        "tracking_specs": ad.tracking_specs,
        "conversion_specs": ad.conversion_specs,
        "tracking_and_conversion_specs": ad.tracking_and_conversion_specs,
        "object_story_spec": story_spec,
        "platform_updated_time": parse_datetime(ad.updated_time),
        **enrichment,
        **_insight_columns(raw_insight, since, until),
    }


def normalize_daily_metrics(
    account_id: str, day: str, raw_insight: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """One ``meta_daily_metrics`` row for ``day``."""
    insight = GraphInsight.model_validate(raw_insight or {})
    return {
        "account_id": account_id,
        "date": day,
        "impressions": parse_metric("impressions", insight.impressions),
        "clicks": parse_metric("clicks", insight.clicks),
        "reach": parse_metric("reach", insight.reach),
        "spend": parse_metric("spend", insight.spend),
        "conversions": fold_actions(insight.actions),
    }
