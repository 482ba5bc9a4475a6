"""Tests for the rate limit governor and usage-header parsing."""

import json

import pytest
from sqlmodel import select

from adsync.connectors.meta.client import UsageSnapshot, parse_usage_headers
from adsync.models.sync_models import MetaRateLimit
from adsync.sync.rate_limit import RateLimitGovernor, calculate_dynamic_delay


# ─────────────────────────────────────────────────────────────────────────────
# Delay formula
# ─────────────────────────────────────────────────────────────────────────────


class TestDynamicDelay:
    def test_plain_endpoint_one_step(self):
        assert calculate_dynamic_delay("campaigns", 1) == 1.0

    def test_every_ten_points_adds_a_step(self):
        assert calculate_dynamic_delay("campaigns", 10) == 1.0
        assert calculate_dynamic_delay("campaigns", 11) == 2.0
        assert calculate_dynamic_delay("campaigns", 25) == 3.0

    def test_insights_endpoint_uses_larger_base(self):
        assert calculate_dynamic_delay("account_insights", 5) == 3.0

    def test_capped_at_five_seconds(self):
        assert calculate_dynamic_delay("ad_insights", 20) == 5.0
        assert calculate_dynamic_delay("campaigns", 95) == 5.0

    def test_zero_points_no_delay(self):
        assert calculate_dynamic_delay("campaigns", 0) == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Usage headers
# ─────────────────────────────────────────────────────────────────────────────


class TestParseUsageHeaders:
    def test_no_headers(self):
        assert parse_usage_headers({"content-type": "application/json"}) is None

    def test_business_use_case_header(self):
        headers = {
            "X-Business-Use-Case-Usage": json.dumps(
                {
                    "123": [
                        {
                            "type": "ads_insights",
                            "call_count": 42,
                            "total_cputime": 12,
                            "total_time": 85,
                            "estimated_time_to_regain_access": 0,
                        }
                    ]
                }
            )
        }
        usage = parse_usage_headers(headers)
        assert usage.usage_percent == 85
        assert usage.call_count == 42
        assert usage.business_use_case == "ads_insights"

    def test_account_header_reset_time(self):
        headers = {
            "x-ad-account-usage": json.dumps(
                {"acc_id_util_pct": 91.5, "reset_time_duration": 120}
            )
        }
        usage = parse_usage_headers(headers)
        assert usage.usage_percent == 91.5
        assert usage.reset_time_duration == 120

    def test_unparseable_header_ignored(self):
        assert parse_usage_headers({"x-app-usage": "not json"}) is None


# ─────────────────────────────────────────────────────────────────────────────
# Governor
# ─────────────────────────────────────────────────────────────────────────────


class TestGovernor:
    @pytest.mark.asyncio
    async def test_pre_call_delay_sleeps(self, session_factory, sleep):
        governor = RateLimitGovernor(session_factory, sleep=sleep)
        assert await governor.pre_call_delay("ad_insights", 1) == 3.0
        assert sleep.calls == [3.0]

    @pytest.mark.asyncio
    async def test_no_usage_no_delay(self, session_factory, sleep):
        governor = RateLimitGovernor(session_factory, sleep=sleep)
        assert await governor.observe("act_1", "campaigns", None) == 0.0
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_below_threshold_persists_without_delay(self, session_factory, session, sleep):
        governor = RateLimitGovernor(session_factory, sleep=sleep)
        usage = UsageSnapshot(usage_percent=40, call_count=40)

        assert await governor.observe("act_1", "campaigns", usage) == 0.0
        assert sleep.calls == []
        row = session.exec(select(MetaRateLimit)).one()
        assert row.usage_percent == 40

    @pytest.mark.asyncio
    async def test_above_threshold_delays(self, session_factory, sleep):
        governor = RateLimitGovernor(session_factory, sleep=sleep)
        usage = UsageSnapshot(usage_percent=92, call_count=35)

        delay = await governor.observe("act_1", "campaigns", usage)

        assert delay == 4.0
        assert sleep.calls == [4.0]

    @pytest.mark.asyncio
    async def test_snapshot_overwritten_not_appended(self, session_factory, session, sleep):
        governor = RateLimitGovernor(session_factory, sleep=sleep)
        await governor.observe("act_1", "campaigns", UsageSnapshot(usage_percent=10))
        await governor.observe("act_1", "campaigns", UsageSnapshot(usage_percent=20))
        await governor.observe("act_1", "ads", UsageSnapshot(usage_percent=30))

        rows = session.exec(select(MetaRateLimit).order_by(MetaRateLimit.endpoint)).all()
        assert [(r.endpoint, r.usage_percent) for r in rows] == [
            ("ads", 30),
            ("campaigns", 20),
        ]

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_raise(self, sleep):
        def broken_factory():
            raise RuntimeError("database is down")

        governor = RateLimitGovernor(broken_factory, sleep=sleep)
        usage = UsageSnapshot(usage_percent=95, call_count=5)

        assert await governor.observe("act_1", "campaigns", usage) == 1.0
