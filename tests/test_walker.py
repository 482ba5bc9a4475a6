"""Tests for the hierarchical sync walker."""

from datetime import date, timedelta

import pytest
from sqlmodel import select

from adsync.models.sync_models import MetaAccountInsights, MetaAd, MetaAdSet, MetaCampaign
from adsync.sync.batch import DateRange, SyncReport
from adsync.sync.walker import SyncWalker, _months_ago

from conftest import NOW, RecordingSleep, small_hierarchy


def _seed_account(session, age: timedelta, account_id: str = "act_1"):
    session.add(
        MetaAccountInsights(
            account_id=account_id,
            name="Cached Acme",
            last_updated=NOW - age,
        )
    )
    session.commit()


def _report() -> SyncReport:
    return SyncReport(sync_type="account_refresh")


# ─────────────────────────────────────────────────────────────────────────────
# Freshness gate
# ─────────────────────────────────────────────────────────────────────────────


class TestFreshness:
    def test_new_account_uses_twelve_months(self, walker):
        decision = walker.check_freshness("act_1")

        assert decision.fresh is False
        assert decision.is_new_account is True
        assert decision.date_range.since == "2025-10-19"
        assert decision.date_range.until == "2026-10-19"

    def test_recent_account_is_fresh(self, walker, session):
        _seed_account(session, timedelta(days=1))

        decision = walker.check_freshness("act_1")

        assert decision.fresh is True
        assert decision.cached.name == "Cached Acme"
        assert decision.date_range is None

    def test_four_day_old_account_gets_four_day_window(self, walker, session):
        _seed_account(session, timedelta(days=4))

        decision = walker.check_freshness("act_1")

        assert decision.fresh is False
        assert decision.is_new_account is False
        assert decision.date_range.since == (NOW.date() - timedelta(days=4)).isoformat()
        assert decision.date_range.until == NOW.date().isoformat()

    def test_force_bypasses_fresh_cache(self, walker, session):
        _seed_account(session, timedelta(hours=2))

        decision = walker.check_freshness("act_1", force=True)

        assert decision.fresh is False
        # Same-day refresh still looks back one day
        assert decision.date_range.since == "2026-10-18"

    def test_long_idle_account_window_is_capped(self, walker, session):
        _seed_account(session, timedelta(days=90))

        decision = walker.check_freshness("act_1")

        assert decision.date_range.since == "2026-09-19"

    def test_months_ago_clamps_day(self):
        assert _months_ago(date(2026, 3, 31), 1) == date(2026, 2, 28)
        assert _months_ago(date(2026, 1, 15), 12) == date(2025, 1, 15)

    @pytest.mark.asyncio
    async def test_fresh_account_makes_no_external_calls(self, walker, graph, session):
        _seed_account(session, timedelta(days=2))

        decision = await walker.sync_account("act_1")

        assert decision.fresh is True
        assert graph.external_calls() == 0

    @pytest.mark.asyncio
    async def test_stale_account_triggers_full_fetch(self, walker, graph, session):
        _seed_account(session, timedelta(days=4))

        await walker.sync_account("act_1")

        assert ("account", "act_1") in graph.calls
        account_insights = [c for c in graph.calls if c[:3] == ("insights", "act_1", "account")]
        assert account_insights[0][3] == "2026-10-15"


# ─────────────────────────────────────────────────────────────────────────────
# Walk + upsert
# ─────────────────────────────────────────────────────────────────────────────


class TestWalk:
    @pytest.mark.asyncio
    async def test_full_walk_persists_hierarchy(self, walker, session):
        report = _report()
        await walker.sync_account("act_1", report=report)

        account = session.exec(select(MetaAccountInsights)).one()
        assert account.name == "Acme Store"
        assert account.is_new_account is True
        assert account.total_impressions == 1000

        campaign = session.exec(select(MetaCampaign)).one()
        assert campaign.account_id == "act_1"
        assert campaign.ctr == 5.0
        assert campaign.conversions == {"purchase": 4.0, "lead": 7.0}

        adset = session.exec(select(MetaAdSet)).one()
        assert adset.campaign_id == "cmp-1"
        assert adset.targeting == {"geo_locations": {"countries": ["US"]}}

        ads = session.exec(select(MetaAd).order_by(MetaAd.ad_id)).all()
        assert [a.ad_id for a in ads] == ["ad-0", "ad-1"]
        assert all(a.ad_set_id == "set-1" and a.campaign_id == "cmp-1" for a in ads)
        assert ads[0].thumbnail_url == "https://cdn/0.jpg"

        assert (report.campaigns_updated, report.ad_sets_updated, report.ads_updated) == (1, 1, 2)
        assert report.success is True

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, walker, session):
        decision = walker.check_freshness("act_1")

        async def sync_pass():
            await walker.sync_account_info("act_1", decision)
            await walker.sync_campaigns("act_1", decision.date_range, _report())

        def snapshot():
            session.expire_all()
            rows = []
            for model in (MetaAccountInsights, MetaCampaign, MetaAdSet, MetaAd):
                for row in session.exec(select(model)).all():
                    data = row.model_dump(exclude={"last_updated", "updated_at"})
                    rows.append((model.__name__, data))
            return rows

        await sync_pass()
        first = snapshot()
        await sync_pass()
        second = snapshot()

        assert first == second

    @pytest.mark.asyncio
    async def test_created_at_survives_upsert(self, walker, session):
        await walker.sync_account("act_1", force=True)
        created = session.exec(select(MetaCampaign)).one().created_at

        await walker.sync_account("act_1", force=True)
        session.expire_all()

        assert session.exec(select(MetaCampaign)).one().created_at == created

    @pytest.mark.asyncio
    async def test_one_failing_ad_does_not_stop_siblings(self, retry, session_factory, sleep, session):
        graph = small_hierarchy(ad_count=10)
        graph.insights["ad-4"] = RuntimeError("insights backend exploded")
        walker = SyncWalker(graph, retry, session_factory, sleep=sleep, now=lambda: NOW)
        report = _report()

        await walker.sync_account("act_1", report=report)

        ads = session.exec(select(MetaAd)).all()
        assert len(ads) == 9
        assert "ad-4" not in {a.ad_id for a in ads}
        assert report.ads_updated == 9
        assert report.errors == [
            {"type": "ad", "id": "ad-4", "error": "insights backend exploded"}
        ]
        assert report.success is False

    @pytest.mark.asyncio
    async def test_failing_ad_set_keeps_parent_campaign(self, retry, session_factory, sleep, session):
        graph = small_hierarchy()
        graph.insights["set-1"] = ValueError("bad ad set")
        walker = SyncWalker(graph, retry, session_factory, sleep=sleep, now=lambda: NOW)
        report = _report()

        await walker.sync_account("act_1", report=report)

        assert session.exec(select(MetaCampaign)).one().campaign_id == "cmp-1"
        assert session.exec(select(MetaAd)).all() == []
        assert report.errors[0]["type"] == "ad_set"

    @pytest.mark.asyncio
    async def test_insights_timeout_stores_entity_without_insights(
        self, retry, session_factory, sleep, session
    ):
        graph = small_hierarchy()
        graph.hang.add("ad-1")
        walker = SyncWalker(
            graph, retry, session_factory, sleep=sleep, now=lambda: NOW, insights_timeout=0.05
        )
        report = _report()

        await walker.sync_account("act_1", report=report)

        ad = session.exec(select(MetaAd).where(MetaAd.ad_id == "ad-1")).one()
        assert ad.impressions == 0
        assert ad.ctr is None
        assert ad.spend is None
        assert report.success is True

    @pytest.mark.asyncio
    async def test_creative_failure_degrades_gracefully(
        self, retry, session_factory, sleep, session
    ):
        graph = small_hierarchy()
        graph.creatives["cr-0"] = RuntimeError("creative lookup denied")
        walker = SyncWalker(graph, retry, session_factory, sleep=sleep, now=lambda: NOW)
        report = _report()

        await walker.sync_account("act_1", report=report)

        ad = session.exec(select(MetaAd).where(MetaAd.ad_id == "ad-0")).one()
        assert ad.thumbnail_url is None
        assert ad.creative_id == "cr-0"
        assert report.success is True

    @pytest.mark.asyncio
    async def test_structure_only_walk_skips_insights(self, walker, graph, session):
        since = date(2026, 10, 12)
        report = _report()

        await walker.sync_campaigns("act_1", None, report, updated_since=since)

        assert not [c for c in graph.calls if c[0] == "insights"]
        assert ("campaigns", "act_1", None, since) in graph.calls
        assert session.exec(select(MetaCampaign)).one().impressions == 0

    @pytest.mark.asyncio
    async def test_burst_delay_between_siblings(self, retry, session_factory, session):
        walker_sleep = RecordingSleep()
        graph = small_hierarchy(ad_count=3)
        walker = SyncWalker(
            graph, retry, session_factory, sleep=walker_sleep, now=lambda: NOW, page_delay=0.5
        )

        await walker.sync_campaigns("act_1", None, _report())

        # three ads: two burst gaps; two ad pages: one page gap
        assert walker_sleep.calls.count(2.0) == 2
        assert walker_sleep.calls.count(0.5) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Stored metrics across partial passes
# ─────────────────────────────────────────────────────────────────────────────


class TestMetricsPreserved:
    @pytest.mark.asyncio
    async def test_structure_only_pass_keeps_insights(self, walker, graph, session):
        window = DateRange("2026-10-15", "2026-10-19")
        await walker.sync_campaigns("act_1", window, _report())

        graph.campaigns[0]["name"] = "Spring Sale (renamed)"
        await walker.sync_campaigns("act_1", None, _report(), updated_since=date(2026, 10, 12))
        session.expire_all()

        campaign = session.exec(select(MetaCampaign)).one()
        assert campaign.name == "Spring Sale (renamed)"
        assert campaign.impressions == 1000
        assert campaign.spend == 100.0
        assert campaign.conversions == {"purchase": 4.0, "lead": 7.0}
        assert campaign.insights_start_date == "2026-10-15"
        for ad in session.exec(select(MetaAd)).all():
            assert ad.impressions == 1000
            assert ad.ctr == 5.0

    @pytest.mark.asyncio
    async def test_timed_out_insights_keep_previous_metrics(
        self, retry, session_factory, sleep, session
    ):
        graph = small_hierarchy()
        walker = SyncWalker(
            graph, retry, session_factory, sleep=sleep, now=lambda: NOW, insights_timeout=0.05
        )
        decision = walker.check_freshness("act_1")
        await walker.sync_account_info("act_1", decision)
        await walker.sync_campaigns("act_1", decision.date_range, _report())

        graph.hang.update({"act_1", "cmp-1"})
        graph.account["name"] = "Acme Store EU"
        await walker.sync_account_info("act_1", decision)
        await walker.sync_campaigns("act_1", decision.date_range, _report())
        session.expire_all()

        account = session.exec(select(MetaAccountInsights)).one()
        assert account.name == "Acme Store EU"
        assert account.total_impressions == 1000
        assert account.average_ctr == 5.0
        assert session.exec(select(MetaCampaign)).one().impressions == 1000
