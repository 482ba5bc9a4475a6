"""ADSYNC — Meta Graph API Client.

Handles authentication, transport-level retries, error parsing and
usage-header capture. Rate-limit retries are NOT handled here: rate-limit
class errors are raised as ``MetaAPIError`` so the sync engine's
retry/backoff controller can classify them and apply its shared backoff.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from adsync.config import settings
from adsync.core.logging import get_logger

logger = get_logger("meta.client")

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2  # seconds

# Graph error codes that mean "slow down" rather than "this request is wrong"
RATE_LIMIT_ERROR_CODES = frozenset(
    {
        4,  # Application request limit reached
        17,  # User request limit reached
        32,  # Page request limit reached
        613,  # Calls within one hour exceeded
        80000,  # Ads Insights BUC throttle
        80001,
        80002,
        80003,  # Custom audience BUC throttle
        80004,  # Ads management BUC throttle
        80005,
        80006,
        80008,
        80009,
        80014,
    }
)
INVALID_PARAMETER_CODE = 100


class MetaAPIError(Exception):
    """Raised when Meta API returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: int = 0,
        error_subcode: int = 0,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "MetaAPIError":
        """Build from a Graph error body ``{"error": {"code", "message", ...}}``."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error", {}) if isinstance(body, dict) else {}
        return cls(
            error.get("message") or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_code=_as_int(error.get("code")),
            error_subcode=_as_int(error.get("error_subcode")),
        )

    def __repr__(self) -> str:
        return (
            f"MetaAPIError(code={self.error_code}, status={self.status_code}, "
            f"message={self.message!r})"
        )


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for the fixed set of throttling codes (or a bare HTTP 429)."""
    if not isinstance(exc, MetaAPIError):
        return False
    return exc.error_code in RATE_LIMIT_ERROR_CODES or (
        exc.error_code == 0 and exc.status_code == 429
    )


def is_invalid_cursor_error(exc: BaseException) -> bool:
    """Expired pagination cursors surface as code 100 "Invalid cursor"."""
    return (
        isinstance(exc, MetaAPIError)
        and exc.error_code == INVALID_PARAMETER_CODE
        and "invalid cursor" in exc.message.lower()
    )


# ── Usage Headers ──


@dataclass
class UsageSnapshot:
    """Usage figures Meta reports in response headers."""

    usage_percent: float = 0.0
    call_count: float = 0.0
    total_cputime: float = 0.0
    total_time: float = 0.0
    estimated_time_to_regain_access: float = 0.0
    business_use_case: Optional[str] = None
    reset_time_duration: Optional[float] = None


def _load_header(headers: Mapping[str, str], name: str) -> Any:
    raw = headers.get(name)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Unparseable usage header {name}: {raw[:200]}")
        return None


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_usage_headers(headers: Mapping[str, str]) -> Optional[UsageSnapshot]:
    """Fold Meta's usage headers into one snapshot.

    ``usage_percent`` is the highest utilisation any header reports, so the
    governor reacts to whichever budget is closest to exhaustion.
    """
    headers = {k.lower(): v for k, v in headers.items()}
    buc = _load_header(headers, "x-business-use-case-usage")
    account = _load_header(headers, "x-ad-account-usage")
    insights = _load_header(headers, "x-fb-ads-insights-throttle")
    app = _load_header(headers, "x-app-usage")

    if not any((buc, account, insights, app)):
        return None

    snapshot = UsageSnapshot()
    percents: List[float] = []

    if isinstance(buc, dict):
        # {"<account id>": [{"type": ..., "call_count": ..., ...}, ...]}
        for entries in buc.values():
            for entry in entries if isinstance(entries, list) else [entries]:
                if not isinstance(entry, dict):
                    continue
                call_count = _num(entry.get("call_count"))
                cputime = _num(entry.get("total_cputime"))
                total_time = _num(entry.get("total_time"))
                percents.extend([call_count, cputime, total_time])
                if call_count >= snapshot.call_count:
                    snapshot.business_use_case = entry.get("type")
                snapshot.call_count = max(snapshot.call_count, call_count)
                snapshot.total_cputime = max(snapshot.total_cputime, cputime)
                snapshot.total_time = max(snapshot.total_time, total_time)
                snapshot.estimated_time_to_regain_access = max(
                    snapshot.estimated_time_to_regain_access,
                    _num(entry.get("estimated_time_to_regain_access")),
                )

    if isinstance(account, dict):
        percents.append(_num(account.get("acc_id_util_pct")))
        if account.get("reset_time_duration") is not None:
            snapshot.reset_time_duration = _num(account.get("reset_time_duration"))

    if isinstance(insights, dict):
        percents.append(_num(insights.get("app_id_util_pct")))
        percents.append(_num(insights.get("acc_id_util_pct")))

    if isinstance(app, dict):
        app_call_count = _num(app.get("call_count"))
        percents.extend(
            [app_call_count, _num(app.get("total_cputime")), _num(app.get("total_time"))]
        )
        snapshot.call_count = max(snapshot.call_count, app_call_count)

    snapshot.usage_percent = max(percents) if percents else 0.0
    return snapshot


# ── Client ──


class MetaClient:
    """Async HTTP client for the Meta Graph / Marketing API."""

    def __init__(
        self,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str | None = None,
    ):
        self.access_token = access_token or settings.meta_access_token
        self.base_url = (
            base_url or f"{settings.meta_base_url}/{settings.meta_api_version}"
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.last_usage: Optional[UsageSnapshot] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.meta_request_timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request, retrying transport failures and 5xx responses."""
        params = dict(params or {})
        params["access_token"] = self.access_token
        url = f"{self.base_url}/{path.lstrip('/')}"

        client = await self._get_client()

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                resp = await client.request(method, url, params=params)
            except httpx.RequestError as e:
                if attempt < MAX_RETRIES:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(f"Request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise MetaAPIError(
                    f"Connection failed after {MAX_RETRIES} retries: {e}"
                ) from e

            self.last_usage = parse_usage_headers(resp.headers)

            if resp.status_code >= 500 and attempt < MAX_RETRIES:
                wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    f"Server error {resp.status_code}. Retrying in {wait}s",
                    extra={"status_code": resp.status_code},
                )
                await asyncio.sleep(wait)
                continue

            if resp.is_error:
                raise MetaAPIError.from_response(resp)

            body = resp.json()
            # Graph occasionally reports errors with a 200 status
            if isinstance(body, dict) and "error" in body:
                raise MetaAPIError.from_response(resp)
            return body

        raise MetaAPIError("Max retries exhausted")

    # ── Graph Primitives ──

    async def read(
        self, object_id: str, fields: Sequence[str], params: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        """Read a single object's attribute fields."""
        query = {"fields": ",".join(fields), **(params or {})}
        return await self._request("GET", object_id, query)

    async def get_edge(
        self,
        object_id: str,
        edge: str,
        fields: Sequence[str],
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Fetch one page of a collection edge (``/{id}/campaigns`` etc.).

        Returns the raw ``{"data": [...], "paging": {...}}`` payload.
        """
        query: Dict[str, Any] = {"fields": ",".join(fields)}
        for key, value in (params or {}).items():
            if value is None:
                continue
            query[key] = json.dumps(value) if isinstance(value, (dict, list)) else value
        return await self._request("GET", f"{object_id}/{edge}", query)

    async def get_insights(
        self,
        object_id: str,
        fields: Sequence[str],
        params: Dict[str, Any] | None = None,
    ) -> List[Dict[str, Any]]:
        """Fetch insight rows for an object."""
        payload = await self.get_edge(object_id, "insights", fields, params)
        return payload.get("data", [])
