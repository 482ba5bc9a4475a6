"""ADSYNC — Rate Limit Governor.

Turns Meta's reported usage into advisory delays. It never raises: a failed
snapshot write is logged and the caller carries on.
"""

import asyncio
import math
from typing import Awaitable, Callable, Optional

from sqlmodel import Session

from adsync.config import settings
from adsync.connectors.meta.client import UsageSnapshot
from adsync.core.logging import get_logger
from adsync.models.sync_models import MetaRateLimit
from adsync.storage.repository import upsert

logger = get_logger("sync.rate_limit")


def is_insights_endpoint(endpoint: str) -> bool:
    return "insights" in endpoint


def calculate_dynamic_delay(endpoint: str, points: float) -> float:
    """Seconds to wait before a call of ``points`` cost on ``endpoint``.

    Every 10 points adds one base step; the result is capped.
    """
    base = (
        settings.insights_call_delay
        if is_insights_endpoint(endpoint)
        else settings.min_call_delay
    )
    multiplier = math.ceil(max(points, 0) / 10)
    return min(base * multiplier, settings.max_dynamic_delay)


class RateLimitGovernor:
    """Advises delays from usage headers and keeps the latest snapshot."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.sleep = sleep

    async def pre_call_delay(self, endpoint: str, points: float) -> float:
        """Pre-emptive pause applied before every external call."""
        delay = calculate_dynamic_delay(endpoint, points)
        if delay > 0:
            await self.sleep(delay)
        return delay

    async def observe(
        self, account_id: str, endpoint: str, usage: Optional[UsageSnapshot]
    ) -> float:
        """Record the latest usage and pause if the account is running hot.

        Returns the delay applied (0 when usage is below the threshold).
        """
        if usage is None:
            return 0.0

        self._persist(account_id, endpoint, usage)

        if usage.usage_percent <= settings.usage_threshold_pct:
            return 0.0

        delay = calculate_dynamic_delay(endpoint, usage.call_count)
        logger.warning(
            f"Usage at {usage.usage_percent:.0f}% on {endpoint}; pausing {delay}s",
            extra={"account_id": account_id, "endpoint": endpoint, "wait_seconds": delay},
        )
        await self.sleep(delay)
        return delay

    def _persist(self, account_id: str, endpoint: str, usage: UsageSnapshot) -> None:
        try:
            with self.session_factory() as session:
                upsert(
                    session,
                    MetaRateLimit,
                    {"account_id": account_id, "endpoint": endpoint},
                    {
                        "usage_percent": usage.usage_percent,
                        "call_count": usage.call_count,
                        "total_cputime": usage.total_cputime,
                        "total_time": usage.total_time,
                        "estimated_time_to_regain_access": usage.estimated_time_to_regain_access,
                        "business_use_case": usage.business_use_case,
                        "reset_time_duration": usage.reset_time_duration,
                        "tier": settings.meta_api_tier,
                    },
                )
                session.commit()
        except Exception as e:
            logger.error(
                f"Error tracking rate limit: {e}",
                extra={"account_id": account_id, "endpoint": endpoint},
            )
