"""ADSYNC — Cursor Paginator.

Drains a cursor-paginated Graph collection into one list. Every page fetch
goes through the retry controller; an expired cursor ends the stream cleanly.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from adsync.config import settings
from adsync.connectors.meta.client import is_invalid_cursor_error
from adsync.core.logging import get_logger
from adsync.sync.retry import CallContext, RetryController

logger = get_logger("sync.paginator")


@dataclass
class Page:
    """One page of a collection plus the cursor for the next one."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @classmethod
    def from_graph(cls, payload: Any) -> "Page":
        """Normalize a Graph payload ``{"data": [...], "paging": {...}}``.

        Meta keeps returning ``cursors.after`` on the last page; only the
        presence of ``paging.next`` says another page exists.
        """
        if isinstance(payload, list):
            return cls(items=list(payload))
        if not isinstance(payload, dict):
            return cls()
        paging = payload.get("paging") or {}
        after = (paging.get("cursors") or {}).get("after")
        return cls(
            items=list(payload.get("data") or []),
            next_cursor=after if paging.get("next") else None,
        )


FetchPage = Callable[[Optional[str]], Awaitable[Page]]


async def drain(
    fetch_page: FetchPage,
    retry: RetryController,
    context: CallContext,
    page_delay: float | None = None,
    max_pages: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[Dict[str, Any]]:
    """Fetch every page and return all items in source order."""
    page_delay = settings.page_delay if page_delay is None else page_delay
    max_pages = max_pages or settings.max_pages

    items: List[Dict[str, Any]] = []
    cursor: Optional[str] = None
    seen_cursors: set[str] = set()

    for page_number in range(1, max_pages + 1):
        try:
            page = await retry.execute(
                lambda: fetch_page(cursor), context
            )
        except Exception as e:
            if is_invalid_cursor_error(e):
                logger.warning(
                    f"Invalid cursor on page {page_number} of {context.endpoint}; "
                    f"stopping with {len(items)} items",
                    extra={"account_id": context.account_id, "endpoint": context.endpoint},
                )
                return items
            raise

        items.extend(page.items)

        if not page.next_cursor or page.next_cursor in seen_cursors:
            break
        seen_cursors.add(page.next_cursor)
        cursor = page.next_cursor
        await sleep(page_delay)
    else:
        logger.warning(
            f"Stopped {context.endpoint} after max_pages={max_pages}",
            extra={"account_id": context.account_id, "endpoint": context.endpoint},
        )

    logger.info(
        f"Fetched {len(items)} records from {context.endpoint}",
        extra={"account_id": context.account_id, "endpoint": context.endpoint},
    )
    return items
