"""Tests for the composed refresh runs."""

from datetime import date

import pytest
from sqlmodel import select

from adsync.models.sync_models import MetaApiPing, MetaCampaign, MetaDailyMetrics, MetaSyncLog
from adsync.sync.retry import BackoffState
from adsync.sync.service import SyncService, yesterday

from conftest import sample_insight, small_hierarchy


@pytest.fixture
def service(session_factory, graph, sleep):
    return SyncService(session_factory, endpoints=graph, sleep=sleep, state=BackoffState())


def test_yesterday():
    assert yesterday(date(2026, 3, 1)) == "2026-02-28"


class TestDailyMetrics:
    @pytest.mark.asyncio
    async def test_upserts_one_row_per_account_and_day(self, service, graph, session):
        graph.daily["act_1"] = sample_insight(impressions="40")

        await service.refresh_daily_metrics(["act_1"], day="2026-10-18")
        graph.daily["act_1"] = sample_insight(impressions="55")
        await service.refresh_daily_metrics(["act_1"], day="2026-10-18")

        rows = session.exec(select(MetaDailyMetrics)).all()
        assert len(rows) == 1
        assert rows[0].impressions == 55
        assert rows[0].date == "2026-10-18"
        assert ("daily", "act_1", "2026-10-18") in graph.calls

    @pytest.mark.asyncio
    async def test_missing_insights_store_zeroes(self, service, session):
        await service.refresh_daily_metrics(["act_1"], day="2026-10-18")

        row = session.exec(select(MetaDailyMetrics)).one()
        assert row.impressions == 0
        assert row.spend is None

    @pytest.mark.asyncio
    async def test_run_is_logged(self, service, graph, session):
        graph.daily["act_2"] = RuntimeError("permission denied")

        report = await service.refresh_daily_metrics(["act_1", "act_2"], day="2026-10-18")

        assert (report.succeeded, report.failed) == (1, 1)
        log = session.exec(select(MetaSyncLog)).one()
        assert log.sync_type == "daily_metrics"
        assert (log.date_range_start, log.date_range_end) == ("2026-10-18", "2026-10-18")
        assert log.success is False


class TestWeeklyDetails:
    @pytest.mark.asyncio
    async def test_structure_only_with_updated_since(self, service, graph, session):
        report = await service.refresh_weekly_details(["act_1"], today=date(2026, 10, 19))

        assert not [c for c in graph.calls if c[0] == "insights"]
        assert ("campaigns", "act_1", None, date(2026, 10, 12)) in graph.calls
        assert report.campaigns_updated == 1
        assert report.ads_updated == 2

        log = session.exec(select(MetaSyncLog)).one()
        assert log.sync_type == "weekly_details"
        assert log.date_range_start == "2026-10-12"


class TestAccountRefresh:
    @pytest.mark.asyncio
    async def test_refresh_walks_and_logs(self, service, session):
        report = await service.refresh_account("act_1")

        assert report.success is True
        assert session.exec(select(MetaCampaign)).one().campaign_id == "cmp-1"
        log = session.exec(select(MetaSyncLog)).one()
        assert log.sync_type == "account_refresh"
        assert log.ads_updated == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_recorded(self, session_factory, sleep, session):
        graph = small_hierarchy()
        graph.account_error = RuntimeError("token revoked")
        service = SyncService(session_factory, endpoints=graph, sleep=sleep, state=BackoffState())

        report = await service.refresh_account("act_1", force=True)

        assert report.failed == 1
        assert report.errors[0]["error"] == "token revoked"
        assert session.exec(select(MetaSyncLog)).one().success is False


class TestMarketingPing:
    @pytest.mark.asyncio
    async def test_all_checks_pass(self, service, graph, session):
        ping = await service.ping("act_1", today=date(2026, 10, 19))

        assert ping.successful is True
        assert ping.error is None
        assert ping.details["account_info"]["name"] == "Acme Store"
        assert ping.details["insights_available"] is True
        assert ping.details["management_permission"] is True
        assert ping.details["errors"] is None
        assert ("insights", "act_1", "account", "2026-10-12", "2026-10-19") in graph.calls
        assert ("creatives", "act_1", 1) in graph.calls

        stored = session.exec(select(MetaApiPing)).one()
        assert stored.account_id == "act_1"
        assert stored.successful is True

    @pytest.mark.asyncio
    async def test_failing_permission_checks_are_reported(self, service, graph, session):
        graph.insights["act_1"] = RuntimeError("Insights permission missing")
        graph.failures["creatives"] = RuntimeError("ads_management not granted")

        ping = await service.ping("act_1")

        assert ping.successful is False
        assert ping.details["campaigns_available"] is True
        assert ping.details["insights_available"] is False
        assert ping.details["errors"] == [
            {"type": "insights", "error": "Insights permission missing"},
            {"type": "management", "error": "ads_management not granted"},
        ]
        assert session.exec(select(MetaApiPing)).one().successful is False

    @pytest.mark.asyncio
    async def test_account_read_failure_stops_ping(self, service, graph, session):
        graph.account_error = RuntimeError("Invalid OAuth access token")

        ping = await service.ping("act_1")

        assert ping.successful is False
        assert ping.error == "Invalid OAuth access token"
        assert graph.calls == [("account", "act_1")]
        assert session.exec(select(MetaApiPing)).one().error == "Invalid OAuth access token"
