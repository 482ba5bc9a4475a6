"""ADSYNC — Hierarchical Sync Walker.

Per account:

    check_freshness ─┬─ fresh → serve the stored row (no external calls)
                     └─ stale → account info → campaigns → ad sets → ads (+ creative)

Each level is fetched with its attributes plus a separate insights call,
merged by the transformer and upserted on its external id. Parents are
committed before their children are fetched. A failing child is logged,
recorded in the report and skipped; its siblings carry on.
"""

import asyncio
import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlmodel import Session

from adsync.config import settings
from adsync.connectors.meta.endpoints import MetaEndpoints
from adsync.connectors.meta.transformer import (
    creative_id_of,
    normalize_account,
    normalize_ad,
    normalize_adset,
    normalize_campaign,
)
from adsync.core.logging import get_logger
from adsync.models.sync_models import MetaAccountInsights, MetaAd, MetaAdSet, MetaCampaign
from adsync.storage.repository import get_account, upsert
from adsync.sync.batch import DateRange, SyncReport
from adsync.sync.paginator import drain
from adsync.sync.retry import CallContext, RetryController

logger = get_logger("sync.walker")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _months_ago(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to the month's length."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


@dataclass
class FreshnessDecision:
    """Outcome of the freshness gate for one account."""

    account_id: str
    fresh: bool
    is_new_account: bool
    date_range: Optional[DateRange] = None
    cached: Optional[MetaAccountInsights] = None
    age_days: Optional[float] = None

    @property
    def stale(self) -> bool:
        return not self.fresh


class SyncWalker:
    """Walks Account → Campaign → AdSet → Ad for one account at a time."""

    def __init__(
        self,
        endpoints: MetaEndpoints,
        retry: RetryController,
        session_factory: Callable[[], Session],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
        insights_timeout: float | None = None,
        burst_delay: float | None = None,
        page_delay: float | None = None,
    ):
        self.endpoints = endpoints
        self.retry = retry
        self.session_factory = session_factory
        self.sleep = sleep
        self.now = now
        self.insights_timeout = insights_timeout or settings.insights_timeout
        self.burst_delay = settings.burst_delay if burst_delay is None else burst_delay
        self.page_delay = settings.page_delay if page_delay is None else page_delay

    # ── Freshness ──

    def check_freshness(self, account_id: str, force: bool = False) -> FreshnessDecision:
        """Decide between serving the cache and walking the account again."""
        now = self.now()
        today = now.date()

        with self.session_factory() as session:
            cached = get_account(session, account_id)

        if cached is None or cached.last_updated is None:
            since = _months_ago(today, settings.new_account_lookback_months)
            logger.info(
                f"🆕 New account {account_id}; fetching since {since}",
                extra={"account_id": account_id},
            )
            return FreshnessDecision(
                account_id=account_id,
                fresh=False,
                is_new_account=True,
                date_range=DateRange(since.isoformat(), today.isoformat()),
            )

        last_updated = _as_utc(cached.last_updated)
        age_days = (now - last_updated).total_seconds() / 86400

        if age_days <= settings.stale_after_days and not force:
            return FreshnessDecision(
                account_id=account_id,
                fresh=True,
                is_new_account=False,
                cached=cached,
                age_days=age_days,
            )

        lookback = (today - last_updated.date()).days
        lookback = max(1, min(lookback, settings.max_incremental_lookback_days))
        since = today - timedelta(days=lookback)
        logger.info(
            f"Account {account_id} is {age_days:.1f} days old; "
            f"refreshing {lookback} days of insights",
            extra={"account_id": account_id},
        )
        return FreshnessDecision(
            account_id=account_id,
            fresh=False,
            is_new_account=False,
            date_range=DateRange(since.isoformat(), today.isoformat()),
            cached=cached,
            age_days=age_days,
        )

    # ── External Calls ──

    async def _insights(
        self, account_id: str, object_id: str, level: str, date_range: Optional[DateRange]
    ) -> Optional[Dict[str, Any]]:
        """Insights for one entity, or None when skipped or timed out."""
        if date_range is None:
            return None
        context = CallContext(account_id, f"{level}_insights")
        try:
            return await asyncio.wait_for(
                self.retry.execute(
                    lambda: self.endpoints.fetch_insights(
                        object_id, date_range.since, date_range.until, level
                    ),
                    context,
                ),
                timeout=self.insights_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"⏱️ Insights timed out for {level} {object_id}; storing without insights",
                extra={"account_id": account_id, "entity_type": level, "entity_id": object_id},
            )
            return None

    async def _creative(
        self, account_id: str, creative_id: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        if not creative_id:
            return None
        try:
            return await self.retry.execute(
                lambda: self.endpoints.fetch_creative(creative_id),
                CallContext(account_id, "creative"),
            )
        except Exception as e:
            logger.warning(
                f"Creative lookup failed for {creative_id}: {e}",
                extra={"account_id": account_id, "entity_type": "creative", "entity_id": creative_id},
            )
            return None

    def _entity_failed(
        self,
        session: Session,
        report: SyncReport,
        entity_type: str,
        entity_id: Optional[str],
        account_id: str,
        error: Exception,
    ) -> None:
        session.rollback()
        report.record_error(entity_type, entity_id, error)
        logger.error(
            f"Error processing {entity_type} {entity_id}: {error}",
            extra={"account_id": account_id, "entity_type": entity_type, "entity_id": entity_id},
        )

    # ── Account ──

    async def sync_account_info(
        self, account_id: str, decision: FreshnessDecision
    ) -> MetaAccountInsights:
        """Fetch account attributes + insights and upsert the account row."""
        date_range = decision.date_range or self.check_freshness(account_id, force=True).date_range
        raw_account = await self.retry.execute(
            lambda: self.endpoints.fetch_account(account_id),
            CallContext(account_id, "account"),
        )
        raw_insight = await self._insights(account_id, account_id, "account", date_range)

        values = normalize_account(
            account_id,
            raw_account,
            raw_insight,
            date_range.since,
            date_range.until,
            is_new_account=decision.is_new_account,
        )
        with self.session_factory() as session:
            row, created = upsert(
                session, MetaAccountInsights, {"account_id": account_id}, values
            )
            session.commit()
            session.refresh(row)
        logger.info(
            f"{'Inserted' if created else 'Updated'} account {account_id}",
            extra={"account_id": account_id, "entity_type": "account"},
        )
        return row

    async def sync_account(
        self,
        account_id: str,
        force: bool = False,
        report: Optional[SyncReport] = None,
    ) -> FreshnessDecision:
        """Full walk for one account, gated on freshness."""
        decision = self.check_freshness(account_id, force)
        if decision.fresh:
            logger.info(
                f"Account {account_id} is fresh; serving cached data",
                extra={"account_id": account_id},
            )
            return decision

        report = report or SyncReport(sync_type="account_refresh", date_range=decision.date_range)
        await self.sync_account_info(account_id, decision)
        await self.sync_campaigns(account_id, decision.date_range, report)
        return decision

    # ── Hierarchy ──

    async def sync_campaigns(
        self,
        account_id: str,
        date_range: Optional[DateRange],
        report: SyncReport,
        updated_since: Optional[date] = None,
    ) -> SyncReport:
        """Walk campaigns → ad sets → ads. ``date_range=None`` skips insights."""
        campaigns = await drain(
            lambda cursor: self.endpoints.fetch_campaigns_page(
                account_id, cursor, updated_since
            ),
            self.retry,
            CallContext(account_id, "campaigns"),
            page_delay=self.page_delay,
            sleep=self.sleep,
        )

        with self.session_factory() as session:
            for index, raw in enumerate(campaigns):
                if index:
                    await self.sleep(self.burst_delay)
                try:
                    await self._sync_campaign(
                        session, account_id, raw, date_range, report, updated_since
                    )
                except Exception as e:
                    self._entity_failed(session, report, "campaign", raw.get("id"), account_id, e)
        return report

    async def _sync_campaign(
        self,
        session: Session,
        account_id: str,
        raw: Dict[str, Any],
        date_range: Optional[DateRange],
        report: SyncReport,
        updated_since: Optional[date],
    ) -> None:
        campaign_id = raw["id"]
        insight = await self._insights(account_id, campaign_id, "campaign", date_range)
        values = normalize_campaign(
            raw,
            account_id,
            insight,
            date_range.since if date_range else None,
            date_range.until if date_range else None,
        )
        upsert(session, MetaCampaign, {"campaign_id": campaign_id}, values)
        session.commit()
        report.campaigns_updated += 1

        adsets = await drain(
            lambda cursor: self.endpoints.fetch_adsets_page(
                campaign_id, cursor, updated_since
            ),
            self.retry,
            CallContext(account_id, "adsets"),
            page_delay=self.page_delay,
            sleep=self.sleep,
        )
        for index, raw_adset in enumerate(adsets):
            if index:
                await self.sleep(self.burst_delay)
            try:
                await self._sync_adset(
                    session, account_id, campaign_id, raw_adset, date_range, report, updated_since
                )
            except Exception as e:
                self._entity_failed(session, report, "ad_set", raw_adset.get("id"), account_id, e)

    async def _sync_adset(
        self,
        session: Session,
        account_id: str,
        campaign_id: str,
        raw: Dict[str, Any],
        date_range: Optional[DateRange],
        report: SyncReport,
        updated_since: Optional[date],
    ) -> None:
        ad_set_id = raw["id"]
        insight = await self._insights(account_id, ad_set_id, "adset", date_range)
        values = normalize_adset(
            raw,
            account_id,
            campaign_id,
            insight,
            date_range.since if date_range else None,
            date_range.until if date_range else None,
        )
        upsert(session, MetaAdSet, {"ad_set_id": ad_set_id}, values)
        session.commit()
        report.ad_sets_updated += 1

        ads = await drain(
            lambda cursor: self.endpoints.fetch_ads_page(ad_set_id, cursor, updated_since),
            self.retry,
            CallContext(account_id, "ads"),
            page_delay=self.page_delay,
            sleep=self.sleep,
        )
        for index, raw_ad in enumerate(ads):
            if index:
                await self.sleep(self.burst_delay)
            try:
                await self._sync_ad(session, account_id, campaign_id, ad_set_id, raw_ad, date_range)
                report.ads_updated += 1
            except Exception as e:
                self._entity_failed(session, report, "ad", raw_ad.get("id"), account_id, e)

    async def _sync_ad(
        self,
        session: Session,
        account_id: str,
        campaign_id: str,
        ad_set_id: str,
        raw: Dict[str, Any],
        date_range: Optional[DateRange],
    ) -> None:
        ad_id = raw["id"]
        insight = await self._insights(account_id, ad_id, "ad", date_range)
        creative = await self._creative(account_id, creative_id_of(raw))
        values = normalize_ad(
            raw,
            account_id,
            ad_set_id,
            campaign_id,
            insight,
            creative,
            date_range.since if date_range else None,
            date_range.until if date_range else None,
        )
        upsert(session, MetaAd, {"ad_id": ad_id}, values)
        session.commit()
