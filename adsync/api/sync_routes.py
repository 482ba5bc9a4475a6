"""ADSYNC — Sync API Routes.

``GET /sync`` serves cached rows while they are fresh. When they are stale,
``getAccountInfo`` refreshes the account row inline and ``getCampaigns``
queues a background walk and answers with what is already stored.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session

from adsync.config import settings
from adsync.connectors.meta.client import MetaAPIError, is_rate_limit_error
from adsync.core.logging import get_logger
from adsync.database import get_session
from adsync.scheduler.jobs import account_refresh_job, submit_job
from adsync.storage.repository import cached_campaigns, recent_pings, recent_sync_logs
from adsync.sync.service import SyncService

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])

ACTIONS = ("getAccountInfo", "getCampaigns")


async def get_sync_service():
    """Dependency — yields a wired sync service and closes its HTTP client."""
    service = SyncService()
    try:
        yield service
    finally:
        await service.close()


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.get("/sync")
async def sync(
    accountId: Optional[str] = Query(None, description="Meta ad account id"),
    action: Optional[str] = Query(None, description=" | ".join(ACTIONS)),
    force: bool = Query(False, description="Ignore the freshness window"),
    session: Session = Depends(get_session),
    service: SyncService = Depends(get_sync_service),
):
    """Return cached account data, refreshing it when stale."""
    account_id = (accountId or "").strip()
    if not account_id:
        return _error(400, "Account ID is required")
    if action not in ACTIONS:
        return _error(400, f"Invalid action. Expected one of: {', '.join(ACTIONS)}")

    try:
        decision = service.walker.check_freshness(account_id, force=force)

        if decision.fresh:
            if action == "getAccountInfo":
                result = decision.cached.model_dump(mode="json")
            else:
                result = {
                    "campaigns": [
                        c.model_dump(mode="json")
                        for c in cached_campaigns(session, account_id)
                    ]
                }
            return {"result": result, "cached": True, "refreshing": False}

        date_range = decision.date_range.as_dict()

        if action == "getAccountInfo":
            account = await service.walker.sync_account_info(account_id, decision)
            return {
                "result": account.model_dump(mode="json"),
                "cached": False,
                "dateRange": date_range,
            }

        job_id = submit_job(account_refresh_job, account_id=account_id, force=force)
        campaigns = [
            c.model_dump(mode="json") for c in cached_campaigns(session, account_id)
        ]
        return {
            "result": {"campaigns": campaigns},
            "cached": True,
            "refreshing": True,
            "jobId": job_id,
            "dateRange": date_range,
        }

    except MetaAPIError as e:
        if is_rate_limit_error(e):
            logger.warning(
                f"Rate limit exhausted for {account_id}: {e.message}",
                extra={"account_id": account_id, "error_code": e.error_code},
            )
            return _error(
                429,
                "Rate limit exceeded. Please try again later.",
                retryAfter=settings.rate_limit_block_seconds,
            )
        logger.error(
            f"Meta API error for {account_id}: {e.message}",
            extra={"account_id": account_id, "error_code": e.error_code},
        )
        return _error(500, e.message)
    except Exception as e:
        logger.exception(f"Sync failed for {account_id}: {e}", extra={"account_id": account_id})
        return _error(500, str(e) or "Internal server error")


@router.get("/sync/logs")
async def sync_logs(
    limit: int = Query(20, ge=1, le=200),
    sync_type: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    """Most recent batch runs, newest first."""
    logs = recent_sync_logs(session, limit=limit, sync_type=sync_type)
    return {
        "status": "success",
        "count": len(logs),
        "logs": [log.model_dump(mode="json") for log in logs],
    }


@router.get("/marketing-ping/history")
async def marketing_ping_history(session: Session = Depends(get_session)):
    """The 50 most recent Marketing API pings, newest first."""
    pings = recent_pings(session, limit=50)
    return {"success": True, "data": [p.model_dump(mode="json") for p in pings]}
