"""ADSYNC — Scheduler Jobs.

APScheduler drives two kinds of work:

- cron jobs for the daily metrics refresh and the weekly structural refresh
- one-shot ``date`` jobs, the queue HTTP handlers submit background
  refreshes to so a request never waits on the sync itself
"""

from typing import Any, Callable, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adsync.config import settings
from adsync.core.logging import get_logger
from adsync.database import session_scope
from adsync.storage.repository import daily_metrics_for, list_account_ids
from adsync.sync.service import SyncService, yesterday

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


def submit_job(func: Callable[..., Any], **kwargs: Any) -> str:
    """Queue ``func(**kwargs)`` to run once, as soon as possible."""
    if not scheduler.running:
        # Serverless starts skip the cron jobs but still need the queue
        scheduler.start()
    job = scheduler.add_job(
        func,
        "date",
        kwargs=kwargs,
        misfire_grace_time=None,
    )
    logger.info(f"📥 Queued {func.__name__} as job {job.id}")
    return job.id


# ── Job Functions ──


async def account_refresh_job(account_id: str, force: bool = False):
    """Walk one account's full hierarchy."""
    logger.info(f"Account refresh starting for {account_id}", extra={"account_id": account_id})
    try:
        async with SyncService() as service:
            report = await service.refresh_account(account_id, force=force)
        logger.info(
            f"Account refresh complete: {report.summary()}",
            extra={"account_id": account_id},
        )
    except Exception as e:
        logger.exception(
            f"Account refresh failed for {account_id}: {e}",
            extra={"account_id": account_id},
        )


async def daily_metrics_job(
    day: Optional[str] = None, account_ids: Optional[Sequence[str]] = None
):
    """Refresh yesterday's totals for accounts that lack them."""
    day = day or yesterday()
    logger.info(f"Scheduled daily metrics refresh for {day} starting...")
    try:
        if account_ids is None:
            with session_scope() as session:
                known = list_account_ids(session)
                have = {m.account_id for m in daily_metrics_for(session, day, known)}
            account_ids = [a for a in known if a not in have]
        if not account_ids:
            logger.info("All accounts already have daily metrics")
            return
        async with SyncService() as service:
            report = await service.refresh_daily_metrics(account_ids, day)
        logger.info(f"Daily metrics refresh complete: {report.summary()}")
    except Exception as e:
        logger.exception(f"Daily metrics refresh failed: {e}")


async def weekly_details_job(account_ids: Optional[Sequence[str]] = None):
    """Refresh campaigns, ad sets and ads changed in the last week."""
    logger.info("Scheduled weekly details refresh starting...")
    try:
        if account_ids is None:
            with session_scope() as session:
                account_ids = list_account_ids(session)
        async with SyncService() as service:
            report = await service.refresh_weekly_details(account_ids)
        logger.info(f"Weekly details refresh complete: {report.summary()}")
    except Exception as e:
        logger.exception(f"Weekly details refresh failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_metrics_job,
        "cron",
        hour=settings.daily_metrics_hour,
        minute=0,
        id="daily_metrics",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.add_job(
        weekly_details_job,
        "cron",
        day_of_week=settings.weekly_details_day,
        hour=settings.weekly_details_hour,
        minute=0,
        id="weekly_details",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info(
        f"Scheduler started. Daily metrics at {settings.daily_metrics_hour}:00 UTC, "
        f"weekly details {settings.weekly_details_day} {settings.weekly_details_hour}:00 UTC"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
