import asyncio

import httpx
import pytest

from reddit_thread_comments.fetcher import ProxyRotator, RetryPolicy, ThreadFetcher


class MockFetcher(ThreadFetcher):
    """ThreadFetcher whose clients talk to an httpx.MockTransport."""

    def __init__(self, handler, **kwargs):
        super().__init__(**kwargs)
        self._transport = httpx.MockTransport(handler)
        self.proxies_used = []
        self.requests = []

    def _make_client(self, proxy):
        self.proxies_used.append(proxy)
        return httpx.AsyncClient(
            transport=self._transport,
            headers=self._headers,
            timeout=self._timeout,
            event_hooks={"request": [self._record]},
        )

    async def _record(self, request):
        self.requests.append(request)


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        asyncio.set_event_loop(None)
        loop.close()


@pytest.fixture
def run_async():
    return _run_async


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def make_fetcher(fake_sleep):
    def _make(handler, *, proxy_urls=None, retry_policy=None, timeout=30.0):
        return MockFetcher(
            handler,
            proxies=ProxyRotator(proxy_urls),
            retry_policy=retry_policy or RetryPolicy(),
            timeout=timeout,
            sleep=fake_sleep,
        )

    return _make
