"""ADSYNC — Retry/Backoff Controller.

Wraps every external call:
  cool-down wait → governor pre-delay → call → (success | rate-limit backoff | raise)

The backoff counters live in one process-wide ``BackoffState``. It is not
partitioned per account: a throttle on one account slows every concurrent
run, which keeps the whole process under Meta's app-level budget.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlmodel import Session

from adsync.config import settings
from adsync.connectors.meta.client import (
    MetaAPIError,
    UsageSnapshot,
    is_rate_limit_error,
)
from adsync.core.logging import get_logger
from adsync.models.sync_models import MetaApiMetric
from adsync.sync.rate_limit import RateLimitGovernor, is_insights_endpoint

logger = get_logger("sync.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class CallContext:
    """Who is calling what, and how expensive it is."""

    account_id: str
    endpoint: str
    call_type: str = "READ"
    points: int = 1


def backoff_delay(
    retry_count: int,
    consecutive_errors: int,
    rng: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait after a rate-limit hit.

    Once rate limits are piling up, the process-wide streak drives a plain
    capped exponential. Otherwise the local retry count is used with jitter.
    """
    base = settings.backoff_base_seconds
    cap = settings.backoff_max_seconds
    if consecutive_errors > 0:
        return min(base * (2**consecutive_errors), cap)
    return min(base * (2**retry_count) + rng(), cap)


class BackoffState:
    """Shared rate-limit counters, guarded by an asyncio lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.cooling_down = False
        self.last_error_at = 0.0
        self.consecutive_errors = 0
        self.wait_time = 0.0
        self._lock = asyncio.Lock()

    async def remaining_cooldown(self) -> float:
        async with self._lock:
            if not self.cooling_down:
                return 0.0
            elapsed = self.clock() - self.last_error_at
            return max(self.wait_time - elapsed, 0.0)

    async def record_rate_limit(self, retry_count: int) -> float:
        """Register a throttle hit and return the wait it implies."""
        async with self._lock:
            self.cooling_down = True
            self.last_error_at = self.clock()
            self.consecutive_errors += 1
            self.wait_time = backoff_delay(retry_count, self.consecutive_errors)
            return self.wait_time

    async def reset(self) -> None:
        async with self._lock:
            self.cooling_down = False
            self.consecutive_errors = 0
            self.wait_time = 0.0


# Process-wide state shared by every controller unless one is injected
backoff_state = BackoffState()


class MetricsRecorder:
    """Writes one ``meta_api_metrics`` row per attempt. Never raises."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(
        self,
        context: CallContext,
        success: bool,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        error_code = None
        error_message = None
        if isinstance(error, MetaAPIError):
            error_code = str(error.error_code) if error.error_code else None
            error_message = error.message
        elif error is not None:
            error_message = str(error) or type(error).__name__

        try:
            with self.session_factory() as session:
                session.add(
                    MetaApiMetric(
                        account_id=context.account_id,
                        endpoint=context.endpoint,
                        call_type=context.call_type,
                        points_used=context.points,
                        success=success,
                        error_code=error_code,
                        error_message=error_message,
                        duration_ms=duration_ms,
                    )
                )
                session.commit()
        except Exception as e:
            logger.error(
                f"Error tracking API metrics: {e}",
                extra={"account_id": context.account_id, "endpoint": context.endpoint},
            )


class RetryController:
    """Executes external calls under the shared rate-limit policy."""

    def __init__(
        self,
        governor: RateLimitGovernor,
        metrics: MetricsRecorder,
        state: BackoffState | None = None,
        read_usage: Callable[[], Optional[UsageSnapshot]] = lambda: None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_retries: int | None = None,
    ):
        self.governor = governor
        self.metrics = metrics
        self.state = state or backoff_state
        self.read_usage = read_usage
        self.sleep = sleep
        self.max_retries = (
            settings.max_rate_limit_retries if max_retries is None else max_retries
        )

    async def execute(
        self, operation: Callable[[], Awaitable[T]], context: CallContext
    ) -> T:
        """Run ``operation``; retry rate-limit errors, re-raise everything else."""
        log_extra = {"account_id": context.account_id, "endpoint": context.endpoint}
        just_backed_off = False

        for attempt in range(self.max_retries + 1):
            if not just_backed_off:
                remaining = await self.state.remaining_cooldown()
                if remaining > 0:
                    logger.info(
                        f"Rate limit cool-down in progress. Waiting {remaining:.1f}s",
                        extra={**log_extra, "wait_seconds": remaining},
                    )
                    await self.sleep(remaining)

            await self.governor.pre_call_delay(context.endpoint, context.points)

            started = time.monotonic()
            try:
                result = await operation()
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                self.metrics.record(context, False, e, duration_ms)

                if not is_rate_limit_error(e):
                    raise

                wait = await self.state.record_rate_limit(attempt)
                if attempt >= self.max_retries:
                    logger.error(
                        f"Max retries ({self.max_retries}) reached for rate limit on "
                        f"{context.endpoint}",
                        extra={**log_extra, "attempt": attempt + 1, "error_code": getattr(e, "error_code", None)},
                    )
                    raise

                logger.warning(
                    f"Rate limit hit on {context.endpoint}. Consecutive errors: "
                    f"{self.state.consecutive_errors}. Waiting {wait:.1f}s before retry "
                    f"{attempt + 1}/{self.max_retries}",
                    extra={**log_extra, "attempt": attempt + 1, "wait_seconds": wait},
                )
                await self.sleep(wait)
                if is_insights_endpoint(context.endpoint):
                    await self.sleep(settings.insights_call_delay)
                just_backed_off = True
                continue

            duration_ms = int((time.monotonic() - started) * 1000)
            await self.state.reset()
            self.metrics.record(context, True, duration_ms=duration_ms)
            await self.governor.observe(
                context.account_id, context.endpoint, self.read_usage()
            )
            return result

        # The loop always returns or raises; kept for type checkers.
        raise RuntimeError("retry loop exited without a result")


def build_retry_controller(
    session_factory: Callable[[], Session],
    read_usage: Callable[[], Optional[UsageSnapshot]] = lambda: None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    state: BackoffState | None = None,
) -> RetryController:
    """Wire a controller with its governor and metrics recorder."""
    return RetryController(
        governor=RateLimitGovernor(session_factory, sleep=sleep),
        metrics=MetricsRecorder(session_factory),
        state=state,
        read_usage=read_usage,
        sleep=sleep,
    )


__all__ = [
    "BackoffState",
    "CallContext",
    "MetricsRecorder",
    "RetryController",
    "backoff_delay",
    "backoff_state",
    "build_retry_controller",
]
