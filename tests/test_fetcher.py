"""Tests for the web fetcher."""

import asyncio
from unittest.mock import AsyncMock, call

import pytest
import pytest_asyncio
from aiohttp import ClientConnectionError, web
from aiohttp.test_utils import TestServer

from sitesearch.crawler.fetcher import FetchError, FetchResult, UnsupportedContentError, WebFetcher


PAGE = "<html><head><title>Hello</title></head><body><p>Hello world</p></body></html>"


@pytest_asyncio.fixture
async def server():
    async def page(request):
        return web.Response(text=PAGE, content_type="text/html")

    async def missing(request):
        raise web.HTTPNotFound()

    async def big(request):
        return web.Response(text="x" * 1000, content_type="text/html")

    async def pdf(request):
        return web.Response(body=b"%PDF-1.4 binary", content_type="application/pdf")

    async def robots(request):
        return web.Response(text="User-agent: *\nDisallow: /\n", content_type="text/plain")

    app = web.Application()
    app.router.add_get("/page", page)
    app.router.add_get("/missing", missing)
    app.router.add_get("/big", big)
    app.router.add_get("/doc.pdf", pdf)
    app.router.add_get("/robots.txt", robots)

    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def fetcher():
    async with WebFetcher(user_agent="TestBot/1.0", max_retries=2, retry_backoff_base=0) as f:
        yield f


class TestWebFetcherRetry:
    """Retry and backoff behaviour, with the network layer mocked out."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        f = WebFetcher(user_agent="TestBot/1.0", max_retries=3, retry_backoff_base=1.0)
        ok = FetchResult(url="https://www.example.com", status_code=200, html=PAGE)
        f._fetch_once = AsyncMock(side_effect=[ClientConnectionError("reset"), asyncio.TimeoutError(), ok])
        f._sleep = AsyncMock()

        result = await f.fetch("https://www.example.com")

        assert result is ok
        assert f._fetch_once.await_count == 3
        assert f._sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_raises_with_last_error_after_all_attempts(self):
        f = WebFetcher(user_agent="TestBot/1.0", max_retries=3, retry_backoff_base=0.5)
        last = ClientConnectionError("third")
        f._fetch_once = AsyncMock(side_effect=[ClientConnectionError("first"), ClientConnectionError("second"), last])
        f._sleep = AsyncMock()

        with pytest.raises(FetchError) as exc_info:
            await f.fetch("https://www.example.com")

        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 3
        assert exc_info.value.url == "https://www.example.com"
        assert f._sleep.await_args_list == [call(0.5), call(1.0)]
        assert f.get_stats()['failed_requests'] == 3

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_sleep(self):
        f = WebFetcher(user_agent="TestBot/1.0", max_retries=1)
        f._fetch_once = AsyncMock(side_effect=ClientConnectionError("down"))
        f._sleep = AsyncMock()

        with pytest.raises(FetchError):
            await f.fetch("https://www.example.com")

        f._sleep.assert_not_awaited()


class TestWebFetcherHttp:
    """Fetcher against a local HTTP server."""

    @pytest.mark.asyncio
    async def test_fetch_page(self, server, fetcher):
        result = await fetcher.fetch(str(server.make_url("/page")))

        assert result.status_code == 200
        assert result.html == PAGE
        assert result.content_type.startswith("text/html")
        assert not result.truncated

    @pytest.mark.asyncio
    async def test_http_error_raises_fetch_error(self, server, fetcher):
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(str(server.make_url("/missing")))

        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_non_html_is_skipped_without_retry(self, server, fetcher):
        with pytest.raises(UnsupportedContentError) as exc_info:
            await fetcher.fetch(str(server.make_url("/doc.pdf")))

        assert exc_info.value.content_type.startswith("application/pdf")
        stats = fetcher.get_stats()
        assert stats['total_requests'] == 1
        assert stats['skipped_content'] == 1
        assert stats['failed_requests'] == 0

    @pytest.mark.asyncio
    async def test_body_is_truncated_at_limit(self, server):
        async with WebFetcher(user_agent="TestBot/1.0", max_content_bytes=100) as f:
            result = await f.fetch(str(server.make_url("/big")))

        assert result.truncated
        assert len(result.html) == 100

    @pytest.mark.asyncio
    async def test_accessibility(self, server, fetcher):
        ok = await fetcher.check_accessibility(str(server.make_url("/page")))
        missing = await fetcher.check_accessibility(str(server.make_url("/missing")))

        assert ok.accessible
        assert not missing.accessible
        assert "HTTP 404" in missing.reason

    @pytest.mark.asyncio
    async def test_unreachable_host_is_inaccessible(self, fetcher):
        result = await fetcher.check_accessibility("http://127.0.0.1:1/")

        assert not result.accessible

    @pytest.mark.asyncio
    async def test_robots_disallow_all(self, server, fetcher):
        assert await fetcher.robots_disallows(str(server.make_url("/page")))
        assert fetcher.get_stats()['robots_disallowed'] == 1
