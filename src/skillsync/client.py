from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_S, DEFAULT_TIMEOUT_S

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SkillsyncError(RuntimeError):
    pass


class InputError(SkillsyncError):
    """Invalid user input or a missing precondition; aborts the command."""


class TransportError(SkillsyncError):
    """An external fetch failed in a way that is not an expected "no access" condition."""


@dataclass(frozen=True)
class SkillsyncHTTPError(SkillsyncError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_RETRIES,
    delay_s: float = DEFAULT_RETRY_DELAY_S,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
) -> T:
    """
    Await ``func()`` up to ``attempts`` times with a fixed delay in between.

    The last error is re-raised unchanged once attempts are exhausted.
    """
    attempts = max(1, attempts)

    def log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        LOGGER.debug("%s failed (attempt %d/%d): %s", description, state.attempt_number, attempts, error)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay_s),
        retry=retry_if_exception_type(retry_on),
        before_sleep=log_retry,
        reraise=True,
    )
    return await retrying(func)


class ListingClient:
    """
    Thin async JSON client for the upstream listing APIs.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._default_headers = dict(default_headers or {})
        self._http = httpx.AsyncClient(timeout=timeout_s, follow_redirects=True, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ListingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        req_headers = dict(self._default_headers)
        if headers:
            req_headers.update(headers)

        try:
            resp = await self._http.request(method.upper(), url, params=params, headers=req_headers)
        except httpx.HTTPError as e:
            raise SkillsyncError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise SkillsyncHTTPError(resp.status_code, resp.text)
        return resp

    async def get_json(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        resp = await self.request(method="GET", url=url, params=params)
        try:
            return resp.json()
        except ValueError as e:
            raise SkillsyncError(f"Invalid JSON from {url}: {e}") from e
