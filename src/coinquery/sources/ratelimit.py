"""Rate-limited HTTP client with backoff retries and cursor pagination.

This module provides the outbound discipline every data source relies on:
- A fixed delay before every request, serialized across concurrent callers
  so one client never sends more than one request per interval
- Exponential-backoff retries on HTTP 429, up to a retry limit
- Immediate propagation of every other error response
- A generic driver for `{edges, pageInfo}` cursor-paginated queries
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from coinquery.errors import ExternalApiFault, RateLimitFault


logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
PagedQuery = Callable[[dict[str, Any]], Awaitable[Mapping[str, Any]]]


@dataclass
class RetryState:
    """Retry bookkeeping for a single outbound request."""

    attempt: int = 0
    wait_ms: float = 0.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[Exception], bool],
    initial_wait_ms: float = 0.0,
    max_retries: int = 3,
    backoff: Callable[[float], float] = lambda wait_ms: wait_ms * 2,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[RetryState, Exception], None] | None = None,
) -> T:
    """Run an operation, waiting before each attempt and backing off on retryable faults.

    The first attempt waits ``initial_wait_ms``; every retry first replaces the
    wait with ``backoff(wait)``. Non-retryable faults, and the fault that
    follows the last permitted retry, propagate unchanged.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        is_retryable: Predicate selecting faults worth retrying
        initial_wait_ms: Delay before the first attempt
        max_retries: Maximum number of retries after the first attempt
        backoff: Maps the previous wait to the next one
        sleep: Awaitable sleep taking seconds (injectable for tests)
        on_retry: Optional hook called after each retry decision

    Returns:
        The operation's result
    """
    state = RetryState(attempt=0, wait_ms=initial_wait_ms)
    while True:
        if state.wait_ms > 0:
            await sleep(state.wait_ms / 1000)
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or state.attempt >= max_retries:
                raise
            state.attempt += 1
            state.wait_ms = backoff(state.wait_ms)
            if on_retry is not None:
                on_retry(state, exc)


class RateLimitedClient:
    """Throttled, retrying wrapper around an ``httpx.AsyncClient``.

    Pre-request delays are taken one caller at a time under a per-instance
    lock, so concurrent callers queue for send slots instead of sleeping
    side by side and firing together.

    Usage:
        async with RateLimitedClient(throttle_ms=1000) as client:
            response = await client.request("POST", url, json=payload)
    """

    def __init__(
        self,
        *,
        throttle_ms: float = 1000,
        max_retries: int = 3,
        backoff_multiplier: float = 2.0,
        min_backoff_ms: float = 500,
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        name: str = "http",
    ):
        self.throttle_ms = throttle_ms
        self.max_retries = max_retries
        self.backoff_multiplier = backoff_multiplier
        self.min_backoff_ms = min_backoff_ms
        self.name = name
        self._sleep = sleep
        self._slot_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers=dict(headers or {}),
            transport=transport,
        )

    async def __aenter__(self) -> "RateLimitedClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _wait_for_slot(self, seconds: float) -> None:
        async with self._slot_lock:
            await self._sleep(seconds)

    def _next_wait(self, wait_ms: float) -> float:
        return max(wait_ms, self.min_backoff_ms) * self.backoff_multiplier

    def _log_retry(self, state: RetryState, exc: Exception) -> None:
        logger.warning(
            "%s: rate limit hit, retrying in %.0fms (attempt %d/%d)",
            self.name,
            state.wait_ms,
            state.attempt,
            self.max_retries,
        )

    async def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ExternalApiFault(f"{method} {url} failed: {exc}", url=url) from exc

        if response.status_code == 429:
            raise RateLimitFault("Too many requests", status_code=429, url=url)
        if response.is_error:
            raise ExternalApiFault(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                url=url,
            )
        return response

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request under the throttle and retry policy.

        Raises:
            RateLimitFault: If throttling persists past ``max_retries``
            ExternalApiFault: On any other transport or HTTP error
        """
        try:
            return await retry_with_backoff(
                lambda: self._send_once(method, url, **kwargs),
                is_retryable=lambda exc: isinstance(exc, RateLimitFault),
                initial_wait_ms=self.throttle_ms,
                max_retries=self.max_retries,
                backoff=self._next_wait,
                sleep=self._wait_for_slot,
                on_retry=self._log_retry,
            )
        except RateLimitFault as exc:
            logger.error("%s: rate limit persisted after %d retries", self.name, self.max_retries)
            raise RateLimitFault(
                f"Rate limit persisted after {self.max_retries} retries",
                status_code=429,
                url=url,
            ) from exc

    async def get_json(self, url: str, *, params: Mapping[str, Any] | None = None, headers: Mapping[str, str] | None = None) -> Any:
        response = await self.request("GET", url, params=_drop_none(params), headers=headers)
        return _decode(response)

    async def post_json(self, url: str, payload: Any, *, headers: Mapping[str, str] | None = None) -> Any:
        response = await self.request("POST", url, json=payload, headers=headers)
        return _decode(response)


def _drop_none(params: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    return {key: value for key, value in params.items() if value is not None}


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ExternalApiFault(
            f"Invalid JSON from {response.request.url}",
            status_code=response.status_code,
            url=str(response.request.url),
        ) from exc


@dataclass(frozen=True)
class PageInfo:
    """Continuation data reported by one page of a cursor-paginated query."""

    has_next_page: bool
    end_cursor: str | None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "PageInfo":
        payload = payload or {}
        return cls(
            has_next_page=bool(payload.get("hasNextPage")),
            end_cursor=payload.get("endCursor"),
        )


def _single_connection(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the edge list under the query's only top-level key."""
    if not data:
        raise ExternalApiFault("Paged query returned no result key")
    result_key = next(iter(data))
    connection = data[result_key]
    if not isinstance(connection, Mapping) or "edges" not in connection:
        raise ExternalApiFault(
            f"Paged query result '{result_key}' is not an edge list",
            details={"result_key": result_key},
        )
    return connection


async def paginate(
    paged_query: PagedQuery,
    initial_params: Mapping[str, Any] | None = None,
    max_pages: float = math.inf,
) -> list[Any]:
    """Drive a cursor-paginated query until exhausted or ``max_pages`` is reached.

    Each page's nodes are appended in page order and ``params["after"]`` is
    advanced to the page's ``endCursor``. A fault on any page propagates and
    discards what was accumulated.

    Args:
        paged_query: Coroutine taking the current params, returning
            ``{<resultKey>: {edges: [{node}], pageInfo: {...}}}``
        initial_params: Parameters for the first page
        max_pages: Page cap (default: unbounded)

    Returns:
        All nodes from every fetched page, in order
    """
    params = dict(initial_params or {})
    results: list[Any] = []
    page_count = 0
    has_next_page = True

    while has_next_page and page_count < max_pages:
        data = await paged_query(dict(params))
        connection = _single_connection(data)
        results.extend(edge["node"] for edge in connection.get("edges") or [])

        page_info = PageInfo.from_payload(connection.get("pageInfo"))
        page_count += 1
        has_next_page = page_info.has_next_page
        if has_next_page:
            if not page_info.end_cursor or page_info.end_cursor == params.get("after"):
                # A repeated or missing cursor would refetch the same page forever
                logger.warning("Pagination stopped after %d pages: cursor did not advance", page_count)
                break
            params["after"] = page_info.end_cursor

    return results
