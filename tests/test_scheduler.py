"""Integration tests for the scheduler: workers, frontier and state store together."""

import asyncio

import fakeredis
import pytest
import pytest_asyncio

from sitesearch.crawler.models import CrawlRequest, StopReason, now_millis
from sitesearch.crawler.scheduler import CrawlerScheduler
from sitesearch.utils.config import Config


SEED = "https://www.example.com"

PAGES = {
    SEED: """<html><head><title>Home</title></head><body>
             <p>Home page text long enough to be indexed on its own, with room to spare.</p>
             <a href="/news/a">A</a><a href="/news/b">B</a><a href="/news/c">C</a>
             <a href="https://other.org/">Other</a></body></html>""",
}
for name in ("a", "b", "c"):
    PAGES[f"{SEED}/news/{name}"] = f"""<html><head><title>News {name}</title></head><body>
        <article>Story {name} is long enough to be indexed without the body fallback kicking in.</article>
        <a href="/news/{name}/more">More</a></body></html>"""


class StubSearchIndex:
    """Keeps indexed documents in memory."""

    def __init__(self):
        self.docs = []

    async def start(self):
        pass

    async def close(self):
        pass

    async def index_document(self, doc):
        self.docs.append(doc)
        return True

    async def query(self, body):
        return {'hits': {'hits': [
            {'_source': {'url': doc.url}, 'highlight': {'title': [doc.title]}} for doc in self.docs
        ]}}


@pytest_asyncio.fixture
async def scheduler(stub_fetcher_class):
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    config = Config()
    config.crawler.num_workers = 2
    sched = CrawlerScheduler(
        config,
        redis_client=client,
        search_index=StubSearchIndex(),
        fetcher=stub_fetcher_class(PAGES),
        node_id="test"
    )
    sched.receive_timeout = 0.1
    await sched.initialize()
    yield sched
    await sched.close()


async def wait_for_status(scheduler, crawl_id, predicate, timeout=5.0):
    async def poll():
        while True:
            status = await scheduler.get_crawl_status(crawl_id)
            if predicate(status):
                return status
            await asyncio.sleep(0.05)
    return await asyncio.wait_for(poll(), timeout)


class TestCrawlerScheduler:

    @pytest.mark.asyncio
    async def test_crawl_and_search(self, scheduler):
        await scheduler.start_workers()
        task = scheduler.submit_crawl("abc123", CrawlRequest(url=SEED, max_distance=1, max_seconds=30, max_urls=10))
        await task

        status = await wait_for_status(
            scheduler, "abc123",
            lambda s: s.num_pages == 4 and s.stop_reason == StopReason.MAX_DISTANCE
        )
        assert status.error_message is None
        assert "https://other.org/" not in scheduler.fetcher.fetched

        await scheduler.stop_workers()
        await scheduler.submitter.drain()
        assert sorted(doc.url for doc in scheduler.search_index.docs) == sorted(PAGES)

        results = await scheduler.search("news")
        assert SEED not in [r.url for r in results]
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_stop_crawl(self, scheduler):
        await scheduler.submit_crawl("abc123", CrawlRequest(url=SEED, max_distance=2, max_seconds=30))

        assert await scheduler.stop_crawl("abc123", "halt") is True
        await scheduler.start_workers(1)
        await asyncio.sleep(0.3)

        status = await scheduler.get_crawl_status("abc123")
        assert status.stop_reason == StopReason.USER_INITIATED
        assert status.error_message == "halt"
        assert scheduler.fetcher.fetched == []

    @pytest.mark.asyncio
    async def test_stopping_unknown_crawl_records_nothing(self, scheduler):
        assert await scheduler.stop_crawl("nope", "halt") is False

        assert await scheduler.state_store.read_status("nope") is None
        assert len(scheduler.cancellation) == 0

    @pytest.mark.asyncio
    async def test_unknown_crawl_is_zeroed(self, scheduler):
        status = await scheduler.get_crawl_status("nope")

        assert status.num_pages == 0
        assert status.stop_reason is None
        assert status.start_time_millis == 0

    @pytest.mark.asyncio
    async def test_expired_crawl_reports_timeout(self, scheduler):
        start = now_millis() - 10_000
        await scheduler.state_store.init_crawl("old", start_time_millis=start, max_time_millis=start + 5_000)

        status = await scheduler.get_crawl_status("old")

        assert status.stop_reason == StopReason.TIMEOUT
        assert (await scheduler.state_store.read_status("old")).stop_reason == StopReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_workers_recover_unacknowledged_records(self, scheduler):
        seed = await scheduler.orchestrator.start_crawl(
            "abc123", CrawlRequest(url=SEED, max_distance=0, max_seconds=30)
        )
        delivery = await scheduler.url_frontier.receive("test-worker-0", timeout=0.1)
        assert delivery.record == seed

        await scheduler.start_workers(1)
        status = await wait_for_status(scheduler, "abc123", lambda s: s.num_pages == 1)

        assert status.num_pages == 1
        assert await scheduler.url_frontier.size() == 0
