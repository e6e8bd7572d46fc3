"""Shared fixtures: in-memory Redis, stub fetcher and stub indexing submitter."""

from typing import Dict, Iterable, List, Optional

import fakeredis
import pytest
import pytest_asyncio
from aiohttp import ClientConnectionError

from sitesearch.crawler.fetcher import AccessibilityResult, FetchError, FetchResult
from sitesearch.crawler.models import CrawlBounds, FrontierRecord, UrlSearchDoc, now_millis
from sitesearch.crawler.url_frontier import URLFrontier
from sitesearch.storage.state_store import CrawlStateStore


class StubFetcher:
    """Serves HTML from a dict instead of the network."""

    def __init__(self, pages: Dict[str, str], inaccessible: Iterable[str] = (),
                 failing: Iterable[str] = (), robots_disallowed: bool = False):
        self.pages = pages
        self.inaccessible = set(inaccessible)
        self.failing = set(failing)
        self.robots_disallowed = robots_disallowed
        self.fetched: List[str] = []

    async def start(self):
        pass

    async def close(self):
        pass

    async def check_accessibility(self, url: str) -> AccessibilityResult:
        if url in self.inaccessible:
            return AccessibilityResult(False, f"URL {url} is not accessible (HTTP 404)")
        return AccessibilityResult(True)

    async def robots_disallows(self, url: str) -> bool:
        return self.robots_disallowed

    async def fetch(self, url: str) -> FetchResult:
        self.fetched.append(url)
        if url in self.failing or url not in self.pages:
            raise FetchError(url, 3, ClientConnectionError("connection refused"))
        return FetchResult(url=url, status_code=200, html=self.pages[url],
                           content_type="text/html; charset=utf-8")


class StubSubmitter:
    """Collects submitted documents."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.docs: List[UrlSearchDoc] = []

    def submit(self, doc: UrlSearchDoc) -> bool:
        self.docs.append(doc)
        return self.accept


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def state_store(redis_client):
    return CrawlStateStore(redis_client)


@pytest.fixture
def frontier(redis_client):
    return URLFrontier(redis_client, frontier_key="test:frontier")


@pytest.fixture
def make_record():
    def _make(url: str = "https://www.example.com", distance: int = 0,
              max_distance: int = 2, max_seconds: int = 30, max_urls: int = 0,
              start_time_millis: Optional[int] = None, crawl_id: str = "abc123",
              base_url: str = "https://www.example.com") -> FrontierRecord:
        return FrontierRecord(
            crawl_id=crawl_id,
            base_url=base_url,
            url=url,
            distance=distance,
            bounds=CrawlBounds(max_distance=max_distance, max_seconds=max_seconds, max_urls=max_urls),
            start_time_millis=start_time_millis if start_time_millis is not None else now_millis()
        )
    return _make


@pytest.fixture
def stub_fetcher_class():
    return StubFetcher


@pytest.fixture
def stub_submitter():
    return StubSubmitter()
