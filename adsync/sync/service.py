"""ADSYNC — Sync Service.

Composes the engine for one unit of work (client → endpoints → retry
controller → walker) and exposes the three refresh runs the scheduler
queues (a single-account refresh, the daily metrics pass and the weekly
structural pass), plus the Marketing API permission ping.
"""

import asyncio
from datetime import date, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from sqlmodel import Session

from adsync.config import settings
from adsync.connectors.meta.client import MetaClient
from adsync.connectors.meta.endpoints import MetaEndpoints
from adsync.connectors.meta.transformer import normalize_daily_metrics
from adsync.core.logging import get_logger
from adsync.database import new_session
from adsync.models.sync_models import MetaApiPing, MetaDailyMetrics
from adsync.storage.repository import upsert
from adsync.sync.batch import BatchScheduler, DateRange, SyncReport
from adsync.sync.retry import BackoffState, CallContext, build_retry_controller
from adsync.sync.walker import SyncWalker, utcnow

logger = get_logger("sync.service")


def yesterday(today: Optional[date] = None) -> str:
    today = today or utcnow().date()
    return (today - timedelta(days=1)).isoformat()


class SyncService:
    """One wired-up sync engine. Use as ``async with SyncService() as svc``."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = new_session,
        client: MetaClient | None = None,
        endpoints: MetaEndpoints | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        state: BackoffState | None = None,
    ):
        self.session_factory = session_factory
        self.client = client or MetaClient()
        self.sleep = sleep
        self.endpoints = endpoints or MetaEndpoints(self.client)
        self.retry = build_retry_controller(
            session_factory,
            read_usage=lambda: self.client.last_usage,
            sleep=sleep,
            state=state,
        )
        self.walker = SyncWalker(
            self.endpoints, self.retry, session_factory, sleep=sleep
        )

    async def __aenter__(self) -> "SyncService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    def _batches(self, batch_size: int) -> BatchScheduler:
        return BatchScheduler(
            self.session_factory, batch_size=batch_size, sleep=self.sleep
        )

    # ── Account Refresh ──

    async def refresh_account(self, account_id: str, force: bool = False) -> SyncReport:
        """Full walk of one account, logged as an ``account_refresh`` run."""
        decision = self.walker.check_freshness(account_id, force)
        scheduler = BatchScheduler(
            self.session_factory,
            batch_size=1,
            batch_delay=0,
            api_call_delay=0,
            sleep=self.sleep,
        )
        return await scheduler.run(
            "account_refresh",
            [account_id],
            lambda aid, report: self.walker.sync_account(aid, force=force, report=report),
            date_range=decision.date_range,
        )

    # ── Daily Metrics ──

    async def sync_daily_metrics(self, account_id: str, day: str) -> MetaDailyMetrics:
        """Fetch and upsert one day of account totals."""
        raw = await self.retry.execute(
            lambda: self.endpoints.fetch_daily_insights(account_id, day),
            CallContext(account_id, "daily_insights"),
        )
        values = normalize_daily_metrics(account_id, day, raw)
        with self.session_factory() as session:
            row, _ = upsert(
                session, MetaDailyMetrics, {"account_id": account_id, "date": day}, values
            )
            session.commit()
            session.refresh(row)
        return row

    async def refresh_daily_metrics(
        self, account_ids: Sequence[str], day: Optional[str] = None
    ) -> SyncReport:
        day = day or yesterday()
        return await self._batches(settings.daily_batch_size).run(
            "daily_metrics",
            account_ids,
            lambda aid, report: self.sync_daily_metrics(aid, day),
            date_range=DateRange(day, day),
        )

    # ── Weekly Details ──

    async def refresh_weekly_details(
        self, account_ids: Sequence[str], today: Optional[date] = None
    ) -> SyncReport:
        """Structure refresh of entities modified in the trailing window."""
        today = today or utcnow().date()
        since = today - timedelta(days=settings.weekly_lookback_days)
        return await self._batches(settings.weekly_batch_size).run(
            "weekly_details",
            account_ids,
            lambda aid, report: self.walker.sync_campaigns(
                aid, None, report, updated_since=since
            ),
            date_range=DateRange(since.isoformat(), today.isoformat()),
        )

    # ── Marketing API Ping ──

    async def ping(self, account_id: str, today: Optional[date] = None) -> MetaApiPing:
        """Check read, insights, campaign and creative access for one account.

        The account read must succeed for the ping to proceed; the other
        checks run independently and are reported per permission.
        """
        today = today or utcnow().date()
        since = today - timedelta(days=settings.weekly_lookback_days)

        try:
            account_info = await self.retry.execute(
                lambda: self.endpoints.fetch_account(account_id),
                CallContext(account_id, "account"),
            )
        except Exception as e:
            logger.error(
                f"❌ Marketing API ping failed for {account_id}: {e}",
                extra={"account_id": account_id, "endpoint": "account"},
            )
            return self._record_ping(
                MetaApiPing(
                    account_id=account_id,
                    successful=False,
                    error=str(e) or type(e).__name__,
                )
            )

        checks = (
            (
                "insights",
                lambda: self.endpoints.fetch_insights(
                    account_id, since.isoformat(), today.isoformat(), "account"
                ),
                "account_insights",
            ),
            ("campaigns", lambda: self.endpoints.fetch_campaigns_page(account_id), "campaigns"),
            ("management", lambda: self.endpoints.fetch_creatives_page(account_id), "creatives"),
        )
        available: Dict[str, bool] = {}
        errors: List[Dict[str, str]] = []
        for name, call, endpoint in checks:
            try:
                await self.retry.execute(call, CallContext(account_id, endpoint))
                available[name] = True
            except Exception as e:
                available[name] = False
                errors.append({"type": name, "error": str(e) or type(e).__name__})
                logger.warning(
                    f"Marketing API ping: {name} check failed for {account_id}: {e}",
                    extra={"account_id": account_id, "endpoint": endpoint},
                )

        details = {
            "account_info": account_info,
            "insights_available": available["insights"],
            "campaigns_available": available["campaigns"],
            "management_permission": available["management"],
            "errors": errors or None,
        }
        return self._record_ping(
            MetaApiPing(account_id=account_id, successful=not errors, details=details)
        )

    def _record_ping(self, ping: MetaApiPing) -> MetaApiPing:
        try:
            with self.session_factory() as session:
                session.add(ping)
                session.commit()
                session.refresh(ping)
        except Exception as e:
            logger.error(
                f"Failed to log marketing ping: {e}",
                extra={"account_id": ping.account_id},
            )
        return ping
