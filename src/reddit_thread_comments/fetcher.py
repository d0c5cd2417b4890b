import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx

from .config import FETCH_BACKOFF_BASE, FETCH_MAX_ATTEMPTS, REQUEST_TIMEOUT
from .errors import MalformedResponse
from .models import FetchResult


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json,text/plain,*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def build_json_url(url: str) -> str:
    """
    Thread JSON endpoint for a thread URL:
    ".../comments/abc"  -> ".../comments/abc/.json"
    ".../comments/abc/" -> ".../comments/abc/.json"
    """
    return url.rstrip("/") + "/.json"


def _is_retryable(exc: BaseException) -> bool:
    # transport errors, timeouts and non-200 statuses all derive from HTTPError
    return isinstance(exc, httpx.HTTPError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = FETCH_MAX_ATTEMPTS
    base_delay: float = FETCH_BACKOFF_BASE
    multiplier: float = 2.0
    retry_on: Callable[[BaseException], bool] = field(default=_is_retryable)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.base_delay * (self.multiplier ** (attempt - 1))


class ProxyRotator:
    """Hands out a proxy URL per request attempt, cycling through the pool."""

    def __init__(self, proxy_urls: Optional[Iterable[str]] = None):
        self._urls = [u for u in (proxy_urls or []) if u]
        self._cycle = itertools.cycle(self._urls) if self._urls else None

    def __bool__(self) -> bool:
        return bool(self._urls)

    def new_url(self) -> Optional[str]:
        if self._cycle is None:
            return None
        return next(self._cycle)


class ThreadFetcher:
    """
    GET + parse JSON with a bounded retry loop.

    Every attempt opens its own client so the proxy can rotate between
    attempts; connections are plain HTTP/1.1.
    """

    def __init__(
        self,
        *,
        proxies: Optional[ProxyRotator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = REQUEST_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        log_callback=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._log = log_callback or (lambda msg, lvl="info": None)
        self._proxies = proxies or ProxyRotator()
        self._policy = retry_policy or RetryPolicy()
        self._timeout = timeout
        self._headers = dict(headers or DEFAULT_HEADERS)
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def _make_client(self, proxy: Optional[str]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            follow_redirects=True,
            http1=True,
            http2=False,
            proxy=proxy,
        )

    async def _attempt(self, url: str, params: Optional[dict]) -> httpx.Response:
        proxy = self._proxies.new_url()
        async with self._make_client(proxy) as client:
            # httpx timeouts are per phase; the attempt as a whole gets one ceiling
            try:
                resp = await asyncio.wait_for(client.get(url, params=params), self._timeout)
            except asyncio.TimeoutError as e:
                raise httpx.TimeoutException(
                    f"attempt exceeded {self._timeout:g}s: {url[:120]}"
                ) from e
        if resp.status_code != 200:
            raise httpx.HTTPStatusError(
                f"HTTP {resp.status_code}: {url[:120]}",
                request=resp.request,
                response=resp,
            )
        return resp

    async def fetch(self, url: str, params: Optional[dict] = None) -> FetchResult:
        policy = self._policy
        last_error: Optional[BaseException] = None
        last_status: Optional[int] = None

        for attempt in range(1, policy.max_attempts + 1):
            self._log(f"fetch attempt {attempt}/{policy.max_attempts}: {url[:120]}")
            try:
                resp = await self._attempt(url, params)
            except Exception as e:
                if not policy.retry_on(e):
                    raise
                last_error = e
                if isinstance(e, httpx.HTTPStatusError):
                    last_status = e.response.status_code
                self._log(f"fetch attempt {attempt} failed: {e}", "warning")
                if attempt < policy.max_attempts:
                    delay = policy.delay_for(attempt)
                    self._log(f"retrying in {delay:g}s")
                    await self._sleep(delay)
                continue

            try:
                document = resp.json()
            except ValueError as e:
                # a 200 with an unparseable body is not a transport problem
                self._log(f"invalid JSON body from {url[:120]}", "warning")
                return FetchResult.failure(
                    MalformedResponse(f"Invalid JSON response: {e}"),
                    attempt,
                    status_code=resp.status_code,
                )
            self._log(f"fetch successful, status: {resp.status_code}")
            return FetchResult.success(document, attempt, status_code=resp.status_code)

        return FetchResult.failure(last_error, policy.max_attempts, status_code=last_status)
