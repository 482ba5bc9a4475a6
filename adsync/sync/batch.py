"""ADSYNC — Batch Scheduler.

Partitions account ids into fixed-size batches and works through them one
account at a time:

    [api_call_delay] account → [api_call_delay] account → ... [batch_delay] → next batch

Every run ends with one ``meta_sync_logs`` row, whether it succeeded or not.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlmodel import Session

from adsync.config import settings
from adsync.core.logging import get_logger
from adsync.models.sync_models import MetaSyncLog

logger = get_logger("sync.batch")


@dataclass(frozen=True)
class DateRange:
    """Inclusive ISO date window for insight queries."""

    since: str
    until: str

    def as_dict(self) -> Dict[str, str]:
        return {"since": self.since, "until": self.until}


@dataclass
class SyncReport:
    """Counters and per-entity errors collected during one run."""

    sync_type: str
    date_range: Optional[DateRange] = None
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    campaigns_updated: int = 0
    ad_sets_updated: int = 0
    ads_updated: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record_error(
        self, entity_type: str, entity_id: Optional[str], error: BaseException
    ) -> None:
        self.errors.append(
            {
                "type": entity_type,
                "id": entity_id,
                "error": str(error) or type(error).__name__,
            }
        )

    @property
    def success(self) -> bool:
        """False as soon as any entity failed, even if most succeeded."""
        return not self.errors

    def summary(self) -> Dict[str, Any]:
        return {
            "sync_type": self.sync_type,
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "campaigns_updated": self.campaigns_updated,
            "ad_sets_updated": self.ad_sets_updated,
            "ads_updated": self.ads_updated,
            "errors": len(self.errors),
            "success": self.success,
        }


ProcessAccount = Callable[[str, SyncReport], Awaitable[Any]]


def chunk(items: Sequence[str], size: int) -> List[List[str]]:
    """Split ``items`` into consecutive lists of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchScheduler:
    """Serial batch runner with inter-call and inter-batch cool-downs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        batch_size: int | None = None,
        batch_delay: float | None = None,
        api_call_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.daily_batch_size
        self.batch_delay = settings.batch_delay if batch_delay is None else batch_delay
        self.api_call_delay = (
            settings.api_call_delay if api_call_delay is None else api_call_delay
        )
        self.sleep = sleep

    async def run(
        self,
        sync_type: str,
        account_ids: Sequence[str],
        process: ProcessAccount,
        date_range: Optional[DateRange] = None,
    ) -> SyncReport:
        """Process every account and persist the run's SyncLog."""
        report = SyncReport(
            sync_type=sync_type, date_range=date_range, total=len(account_ids)
        )
        batches = chunk(account_ids, self.batch_size)
        logger.info(
            f"🔄 {sync_type}: {len(account_ids)} accounts in {len(batches)} batches "
            f"of {self.batch_size}"
        )

        for index, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch {index}/{len(batches)}: {batch}")
            for account_id in batch:
                await self.sleep(self.api_call_delay)
                try:
                    await process(account_id, report)
                    report.succeeded += 1
                except Exception as e:
                    report.failed += 1
                    report.record_error("account", account_id, e)
                    logger.error(
                        f"Error processing account {account_id}: {e}",
                        extra={"account_id": account_id, "entity_type": "account"},
                    )
                finally:
                    report.processed += 1

            if index < len(batches):
                logger.info(f"Waiting {self.batch_delay}s before next batch")
                await self.sleep(self.batch_delay)

        self.write_log(report)
        logger.info(f"✅ {sync_type} complete: {report.summary()}")
        return report

    def write_log(self, report: SyncReport) -> Optional[MetaSyncLog]:
        """Append the run outcome to ``meta_sync_logs``."""
        log = MetaSyncLog(
            sync_type=report.sync_type,
            date_range_start=report.date_range.since if report.date_range else None,
            date_range_end=report.date_range.until if report.date_range else None,
            total=report.total,
            processed=report.processed,
            succeeded=report.succeeded,
            failed=report.failed,
            campaigns_updated=report.campaigns_updated,
            ad_sets_updated=report.ad_sets_updated,
            ads_updated=report.ads_updated,
            errors=list(report.errors),
            success=report.success,
            started_at=report.started_at,
            completed_at=datetime.now(timezone.utc),
        )
        try:
            with self.session_factory() as session:
                session.add(log)
                session.commit()
                session.refresh(log)
            return log
        except Exception as e:
            logger.error(f"❌ Failed to write sync log for {report.sync_type}: {e}")
            return None
