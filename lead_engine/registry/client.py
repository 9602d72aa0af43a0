"""
Registry API client (SAM.gov-compatible entity and opportunity search).

Paging policy per classification code:
- one outbound call at a time for the whole client (shared upstream quota)
- rate-limited (429): sleep a fixed backoff and retry once, then give up on the code
- other failures (5xx, timeout, transport, malformed body): retry the same page,
  give up on the code after REGISTRY_MAX_CONSECUTIVE_ERRORS in a row
- 401/403: ConfigurationError, which aborts the whole run
- an empty page ends pagination

Giving up on a code keeps whatever was already yielded; the reason is left on
the cursor's `error` attribute for the caller to aggregate.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from lead_engine.config import settings
from lead_engine.errors import ConfigurationError, UpstreamTransientError
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.sync_domain import CodeError, DateWindow

logger = get_logger(__name__)

USER_AGENT = "GovConLeadEngine/1.0"


class RecordKind(str, Enum):
    ENTITIES = "entities"
    OPPORTUNITIES = "opportunities"


class RegistryError(Exception):
    """Non rate-limit failure talking to the registry."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class RegistryRateLimitedError(UpstreamTransientError):
    """The registry answered 429."""


def format_registry_date(value) -> str:
    return value.strftime("%m/%d/%Y")


@dataclass(frozen=True, slots=True)
class _Endpoint:
    url: str
    records_key: str

    def params(self, kind: RecordKind, code: str, window: DateWindow, offset: int, limit: int) -> dict:
        params = {"limit": str(limit), "offset": str(offset)}
        if kind is RecordKind.ENTITIES:
            params.update(
                {
                    "registrationDate": f"[{format_registry_date(window.start)},{format_registry_date(window.end)}]",
                    "registrationStatus": "A",
                    "naicsCode": code,
                    "includeSections": "entityRegistration,coreData,assertions,pointsOfContact",
                }
            )
        else:
            params.update(
                {
                    "ncode": code,
                    "postedFrom": format_registry_date(window.start),
                    "postedTo": format_registry_date(window.end),
                    "ptype": "o,p,k,r,s,g,i",
                }
            )
        return params


class RegistryCursor:
    """
    Lazy, single-use pager over one classification code.

    After iteration: `fetched` holds the number of records yielded, `pages`
    the number of successful calls, `error` the reason pagination stopped
    early (None when the code was exhausted or the cap was reached).
    """

    def __init__(
        self,
        client: "RegistryClient",
        kind: RecordKind,
        code: str,
        window: DateWindow,
        max_records: int,
    ):
        self.client = client
        self.kind = kind
        self.code = code
        self.window = window
        self.max_records = max_records
        self.fetched = 0
        self.pages = 0
        self.error: CodeError | None = None

    def __aiter__(self) -> AsyncIterator[dict]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict]:
        client = self.client
        offset = 0
        consecutive_errors = 0
        rate_limit_retried = False

        while self.fetched < self.max_records:
            limit = min(client.page_size, self.max_records - self.fetched)
            try:
                records, total = await client.fetch_page(self.kind, self.code, self.window, offset, limit)
            except RegistryRateLimitedError as e:
                if rate_limit_retried:
                    self._give_up("rate_limited", str(e))
                    return
                rate_limit_retried = True
                logger.warning(
                    "Registry rate limited, backing off",
                    code=self.code,
                    kind=self.kind.value,
                    backoff_seconds=client.rate_limit_backoff,
                )
                await client.sleep(client.rate_limit_backoff)
                continue
            except RegistryError as e:
                consecutive_errors += 1
                if not e.recoverable or consecutive_errors >= client.max_consecutive_errors:
                    self._give_up("upstream_error", str(e))
                    return
                logger.warning(
                    "Registry request failed, retrying page",
                    code=self.code,
                    offset=offset,
                    attempt=consecutive_errors,
                    error=str(e),
                )
                await client.sleep(client.error_retry_delay)
                continue

            consecutive_errors = 0
            rate_limit_retried = False
            self.pages += 1

            if not records:
                return

            for record in records[: self.max_records - self.fetched]:
                self.fetched += 1
                yield record

            offset += len(records)
            if len(records) < limit or (total is not None and offset >= total):
                return
            await client.sleep(client.page_delay)

    def _give_up(self, kind: str, message: str) -> None:
        self.error = CodeError(code=self.code, kind=kind, message=message)
        logger.warning(
            "Registry pagination aborted for code",
            code=self.code,
            kind=self.kind.value,
            reason=kind,
            fetched=self.fetched,
            error=message,
        )


class RegistryClient:
    """
    Async client for the registry search APIs.

    Usage:
        async with RegistryClient(api_key) as registry:
            cursor = registry.paginate(RecordKind.ENTITIES, "541512", window, 500)
            async for raw in cursor:
                ...
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
        rate_limit_backoff: float | None = None,
        page_delay: float | None = None,
        error_retry_delay: float | None = None,
        max_consecutive_errors: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key or settings.require_registry_credentials()
        self.page_size = page_size or settings.REGISTRY_PAGE_SIZE
        self.timeout = timeout or settings.REGISTRY_TIMEOUT_SECONDS
        self.rate_limit_backoff = (
            settings.REGISTRY_RATE_LIMIT_BACKOFF_SECONDS if rate_limit_backoff is None else rate_limit_backoff
        )
        self.page_delay = settings.REGISTRY_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.error_retry_delay = (
            settings.REGISTRY_ERROR_RETRY_DELAY_SECONDS if error_retry_delay is None else error_retry_delay
        )
        self.max_consecutive_errors = max_consecutive_errors or settings.REGISTRY_MAX_CONSECUTIVE_ERRORS
        self.sleep = sleep
        self._endpoints = {
            RecordKind.ENTITIES: _Endpoint(settings.REGISTRY_ENTITY_URL, "entityData"),
            RecordKind.OPPORTUNITIES: _Endpoint(settings.REGISTRY_OPPORTUNITY_URL, "opportunitiesData"),
        }
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        self._call_lock = asyncio.Lock()

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def paginate(
        self, kind: RecordKind, code: str, window: DateWindow, max_records: int
    ) -> RegistryCursor:
        return RegistryCursor(self, kind, code, window, max_records)

    async def fetch_page(
        self, kind: RecordKind, code: str, window: DateWindow, offset: int, limit: int
    ) -> tuple[list[dict], int | None]:
        """Fetch one page. Returns (records, total_records_or_None)."""
        endpoint = self._endpoints[kind]
        params = endpoint.params(kind, code, window, offset, limit)
        params["api_key"] = self.api_key

        async with self._call_lock:
            try:
                response = await self._client.get(endpoint.url, params=params, timeout=self.timeout)
            except httpx.TimeoutException as e:
                raise RegistryError(f"Timeout after {self.timeout}s") from e
            except httpx.TransportError as e:
                raise RegistryError(f"Transport error: {type(e).__name__}") from e

        status = response.status_code
        if status == 429:
            raise RegistryRateLimitedError("Registry rate limit exceeded", status_code=status)
        if status in (401, 403):
            raise ConfigurationError(f"Registry rejected credentials (HTTP {status})")
        if status >= 500:
            raise RegistryError(f"Registry server error (HTTP {status})", status_code=status)
        if status >= 400:
            raise RegistryError(
                f"Registry rejected request (HTTP {status}): {response.text[:200]}",
                status_code=status,
                recoverable=False,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryError("Registry returned a non-JSON body", status_code=status) from e

        if not isinstance(payload, dict):
            raise RegistryError("Registry returned an unexpected payload shape", status_code=status)

        records = payload.get(endpoint.records_key) or []
        if not isinstance(records, list):
            records = []
        total = payload.get("totalRecords")
        logger.debug(
            "Registry page fetched",
            kind=kind.value,
            code=code,
            offset=offset,
            count=len(records),
            total=total,
        )
        return records, total if isinstance(total, int) else None
