"""Shared fixtures: in-memory database, recording sleep and a fake Graph API."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import adsync.models.sync_models  # noqa: F401  (registers the tables)
from adsync.sync.paginator import Page
from adsync.sync.retry import BackoffState, build_retry_controller
from adsync.sync.walker import SyncWalker

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class RecordingSleep:
    """Async ``sleep`` stand-in that returns immediately and remembers waits."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeGraph:
    """In-memory stand-in for ``MetaEndpoints``.

    ``insights`` maps an object id to a payload or an exception instance.
    Ids in ``hang`` never answer their insights call.
    ``failures`` maps "campaigns" or "creatives" to an error those edges raise.
    """

    def __init__(
        self,
        account: Optional[Dict[str, Any]] = None,
        campaigns: Optional[List[Dict[str, Any]]] = None,
        adsets: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        ads: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        insights: Optional[Dict[str, Any]] = None,
        creatives: Optional[Dict[str, Any]] = None,
        daily: Optional[Dict[str, Any]] = None,
        page_size: int = 2,
    ):
        self.account = account or {
            "id": "act_1",
            "name": "Acme Store",
            "account_status": 1,
            "currency": "USD",
            "amount_spent": "123456",
        }
        self.campaigns = campaigns or []
        self.adsets = adsets or {}
        self.ads = ads or {}
        self.insights = insights or {}
        self.creatives = creatives or {}
        self.daily = daily or {}
        self.page_size = page_size
        self.hang: set = set()
        self.account_error: Optional[Exception] = None
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    def _page(self, items: List[Dict[str, Any]], after: Optional[str]) -> Page:
        start = int(after) if after else 0
        end = start + self.page_size
        payload: Dict[str, Any] = {"data": items[start:end]}
        if end < len(items):
            payload["paging"] = {
                "cursors": {"after": str(end)},
                "next": f"https://graph.facebook.com/next?after={end}",
            }
        return Page.from_graph(payload)

    async def fetch_account(self, account_id):
        self.calls.append(("account", account_id))
        if self.account_error is not None:
            raise self.account_error
        return dict(self.account)

    async def fetch_insights(self, object_id, since, until, level):
        self.calls.append(("insights", object_id, level, since, until))
        if object_id in self.hang:
            await asyncio.Event().wait()
        value = self.insights.get(object_id)
        if isinstance(value, BaseException):
            raise value
        return value

    async def fetch_daily_insights(self, account_id, day):
        self.calls.append(("daily", account_id, day))
        value = self.daily.get(account_id)
        if isinstance(value, BaseException):
            raise value
        return value

    async def fetch_campaigns_page(self, account_id, after=None, updated_since=None):
        self.calls.append(("campaigns", account_id, after, updated_since))
        if "campaigns" in self.failures:
            raise self.failures["campaigns"]
        return self._page(self.campaigns, after)

    async def fetch_adsets_page(self, campaign_id, after=None, updated_since=None):
        self.calls.append(("adsets", campaign_id, after, updated_since))
        return self._page(self.adsets.get(campaign_id, []), after)

    async def fetch_ads_page(self, ad_set_id, after=None, updated_since=None):
        self.calls.append(("ads", ad_set_id, after, updated_since))
        return self._page(self.ads.get(ad_set_id, []), after)

    async def fetch_creative(self, creative_id):
        self.calls.append(("creative", creative_id))
        value = self.creatives.get(creative_id)
        if isinstance(value, BaseException):
            raise value
        return value or {}

    async def fetch_creatives_page(self, account_id, limit=1):
        self.calls.append(("creatives", account_id, limit))
        if "creatives" in self.failures:
            raise self.failures["creatives"]
        return Page.from_graph({"data": list(self.creatives.values())[:limit]})

    def external_calls(self) -> int:
        return len(self.calls)


def sample_insight(**overrides) -> Dict[str, Any]:
    insight = {
        "impressions": "1000",
        "clicks": "50",
        "reach": "800",
        "spend": "100.0",
        "actions": [
            {"action_type": "purchase", "value": "4"},
            {"action_type": "lead", "value": "7"},
        ],
        "action_values": [{"action_type": "purchase", "value": "300"}],
        "date_start": "2026-10-15",
        "date_stop": "2026-10-19",
    }
    insight.update(overrides)
    return insight


def small_hierarchy(ad_count: int = 2) -> FakeGraph:
    """One campaign → one ad set → ``ad_count`` ads, all with insights."""
    ads = [
        {
            "id": f"ad-{i}",
            "name": f"Ad {i}",
            "status": "ACTIVE",
            "creative": {"id": f"cr-{i}"},
        }
        for i in range(ad_count)
    ]
    insights = {"cmp-1": sample_insight(), "set-1": sample_insight(), "act_1": sample_insight()}
    insights.update({ad["id"]: sample_insight() for ad in ads})
    return FakeGraph(
        campaigns=[
            {
                "id": "cmp-1",
                "name": "Spring Sale",
                "status": "ACTIVE",
                "objective": "OUTCOME_SALES",
                "daily_budget": "5000",
                "updated_time": "2026-10-18T09:30:00+0000",
            }
        ],
        adsets={"cmp-1": [{"id": "set-1", "name": "Lookalikes", "status": "ACTIVE", "targeting": {"geo_locations": {"countries": ["US"]}}}]},
        ads={"set-1": ads},
        insights=insights,
        creatives={
            f"cr-{i}": {"id": f"cr-{i}", "object_type": "SHARE", "image_url": f"https://cdn/{i}.jpg"}
            for i in range(ad_count)
        },
    )


# ─────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def backoff():
    return BackoffState()


@pytest.fixture
def retry(session_factory, sleep, backoff):
    return build_retry_controller(session_factory, sleep=sleep, state=backoff)


@pytest.fixture
def graph():
    return small_hierarchy()


@pytest.fixture
def walker(graph, retry, session_factory, sleep):
    return SyncWalker(graph, retry, session_factory, sleep=sleep, now=lambda: NOW)
