"""Tests for the indexing submitter pool."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from sitesearch.crawler.models import UrlSearchDoc
from sitesearch.search.submitter import IndexingSubmitter
from sitesearch.utils.monitoring import CrawlerMonitor


def make_doc(i):
    return UrlSearchDoc(crawl_id="abc123", url=f"https://www.example.com/{i}",
                        base_url="https://www.example.com", content=f"page {i}", distance=1)


@pytest.fixture
def monitor():
    return CrawlerMonitor(registry=CollectorRegistry())


class TestIndexingSubmitter:

    @pytest.mark.asyncio
    async def test_drain_indexes_everything_queued(self, monitor):
        index = AsyncMock()
        index.index_document.return_value = True
        submitter = IndexingSubmitter(index, pool_size=2, queue_size=10, monitor=monitor)
        await submitter.start()

        assert all(submitter.submit(make_doc(i)) for i in range(5))
        await submitter.drain()

        assert index.index_document.await_count == 5
        assert monitor.registry.get_sample_value('crawler_documents_indexed_total') == 5.0
        assert submitter.workers == []

    @pytest.mark.asyncio
    async def test_index_failures_are_swallowed(self, monitor):
        index = AsyncMock()
        index.index_document.side_effect = [RuntimeError("boom"), False, True]
        submitter = IndexingSubmitter(index, pool_size=1, queue_size=10, monitor=monitor)
        await submitter.start()

        for i in range(3):
            submitter.submit(make_doc(i))
        await submitter.drain()

        assert monitor.registry.get_sample_value('crawler_index_failures_total') == 2.0
        assert monitor.registry.get_sample_value('crawler_documents_indexed_total') == 1.0

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self, monitor):
        gate = asyncio.Event()

        async def slow_index(doc):
            await gate.wait()
            return True

        index = AsyncMock()
        index.index_document.side_effect = slow_index
        submitter = IndexingSubmitter(index, pool_size=1, queue_size=1, monitor=monitor)
        await submitter.start()

        assert submitter.submit(make_doc(0))
        await asyncio.sleep(0)  # worker takes doc 0 and blocks
        assert submitter.submit(make_doc(1))
        assert not submitter.submit(make_doc(2))

        gate.set()
        await submitter.drain()
        assert index.index_document.await_count == 2
        assert monitor.registry.get_sample_value('crawler_index_submissions_rejected_total') == 1.0

    @pytest.mark.asyncio
    async def test_submit_when_stopped(self):
        index = AsyncMock()
        submitter = IndexingSubmitter(index)

        assert not submitter.submit(make_doc(0))

        await submitter.start()
        await submitter.stop()
        assert not submitter.submit(make_doc(1))
        index.index_document.assert_not_awaited()
