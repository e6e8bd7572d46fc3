"""
Crawl orchestrator: the per-record BFS state machine.

For each FrontierRecord a worker runs stop-check -> fetch -> extract -> index ->
expand. All crawl state is read from and written to the shared CrawlStateStore, so
any worker in any process can pick up any record.
"""

import logging
import time
from typing import Callable, List, Optional
from urllib.parse import urlparse

from .cancellation import CancellationToken
from .fetcher import FetchError, UnsupportedContentError, WebFetcher
from .models import CrawlRequest, CrawlStatus, FrontierRecord, StopReason, UrlSearchDoc, now_millis
from .parser import ContentParser
from .url_frontier import URLFrontier
from ..search.submitter import IndexingSubmitter
from ..storage.state_store import CrawlStateStore
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


def determine_stop_reason(record: FrontierRecord, visited_count: int, now: int,
                          shutdown_requested: bool) -> Optional[StopReason]:
    """First applicable stop reason for a record, in fixed priority order."""
    if record.distance > record.bounds.max_distance:
        return StopReason.MAX_DISTANCE
    if record.bounds.max_urls > 0 and visited_count >= record.bounds.max_urls:
        return StopReason.MAX_URLS
    if now >= record.deadline_millis:
        return StopReason.TIMEOUT
    if shutdown_requested:
        return StopReason.USER_INITIATED
    return None


def is_valid_seed_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.hostname)


class CrawlOrchestrator:
    """
    Runs FrontierRecords through the crawl state machine.

    Collaborators are passed in explicitly; the orchestrator keeps no crawl state
    of its own.
    """

    def __init__(self, state_store: CrawlStateStore, fetcher: WebFetcher, parser: ContentParser,
                 submitter: IndexingSubmitter, frontier: URLFrontier,
                 monitor: Optional[CrawlerMonitor] = None, respect_robots_txt: bool = False,
                 clock: Callable[[], int] = now_millis):
        self.state_store = state_store
        self.fetcher = fetcher
        self.parser = parser
        self.submitter = submitter
        self.frontier = frontier
        self.monitor = monitor
        self.respect_robots_txt = respect_robots_txt
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def start_crawl(self, crawl_id: str, request: CrawlRequest) -> Optional[FrontierRecord]:
        """
        Reset state for ``crawl_id`` and dispatch the seed record.
        An invalid seed URL is recorded on the status and nothing is dispatched.
        """
        start_time = self.clock()
        deadline = start_time + request.max_seconds * 1000
        await self.state_store.init_crawl(crawl_id, start_time, deadline)

        if not is_valid_seed_url(request.url):
            self.logger.warning(f"Crawl {crawl_id} rejected, invalid seed URL: {request.url!r}")
            await self.state_store.record_stop_reason(
                crawl_id, StopReason.USER_INITIATED, f"Invalid seed URL: {request.url}"
            )
            return None

        seed = FrontierRecord.seed(crawl_id, request, start_time)
        await self.frontier.publish(seed)
        self.logger.info(
            f"Crawl {crawl_id} started at {seed.url} "
            f"(maxDistance={request.max_distance}, maxSeconds={request.max_seconds}, "
            f"maxUrls={request.max_urls})"
        )
        return seed

    async def stop_crawl(self, crawl_id: str, message: str,
                         token: Optional[CancellationToken] = None):
        """User-initiated stop: records already on the frontier are dropped when they come up."""
        if token is not None:
            token.cancel()
        await self.state_store.request_stop(crawl_id)
        await self.state_store.record_stop_reason(crawl_id, StopReason.USER_INITIATED, message)
        await self.state_store.clear_visited(crawl_id)
        self.logger.info(f"Crawl {crawl_id} stopped by user: {message}")

    async def process_record(self, record: FrontierRecord, token: CancellationToken):
        """Process one record. Never raises: failures end up on the crawl status."""
        log = get_crawler_logger(__name__, crawl_id=record.crawl_id, url=record.url)
        try:
            outcome = await self._process(record, token, log)
        except Exception as e:
            log.error(f"Unexpected error processing {record.url}: {e}", exc_info=True)
            outcome = 'error'
            await self._record_error(record.crawl_id, f"Unexpected error processing {record.url}: {e}")
        if self.monitor:
            self.monitor.record_outcome(outcome)

    async def _process(self, record: FrontierRecord, token: CancellationToken, log) -> str:
        log.info(f"Crawling {record.url} (distance {record.distance})")
        crawl_id = record.crawl_id

        visited_count = await self.state_store.visited_count(crawl_id)
        stop_reason = determine_stop_reason(
            record, visited_count, self.clock(),
            await self._shutdown_requested(crawl_id, token)
        )
        await self._write_status(crawl_id, CrawlStatus(
            distance=record.distance,
            start_time_millis=record.start_time_millis,
            num_pages=visited_count,
            stop_reason=stop_reason,
            max_time_millis=record.deadline_millis
        ))
        if stop_reason is not None:
            log.info(f"Not crawling {record.url} because stopReason={stop_reason.value}")
            return 'stopped'

        access = await self.fetcher.check_accessibility(record.url)
        if not access.accessible:
            log.warning(access.reason)
            await self._record_error(crawl_id, access.reason)
            return 'inaccessible'

        if await self.fetcher.robots_disallows(record.url):
            if self.respect_robots_txt:
                await self._record_error(crawl_id, f"robots.txt disallows crawling {record.url}")
                return 'robots_blocked'
            log.warning(f"robots.txt disallows crawling {record.url}, continuing")

        await self.state_store.try_mark_visited(crawl_id, record.url)

        started = time.time()
        try:
            page = await self.fetcher.fetch(record.url)
        except FetchError as e:
            if self.monitor:
                self.monitor.record_fetch(time.time() - started, failed=True)
            log.warning(str(e))
            await self._record_error(crawl_id, str(e))
            return 'fetch_failed'
        except UnsupportedContentError as e:
            log.info(str(e))
            return 'unsupported_content'
        if self.monitor:
            self.monitor.record_fetch(time.time() - started)

        document = self.parser.parse(page)
        content = self.parser.extract_content(document)
        links = self.parser.extract_links(record.base_url, document)

        if not content and not links:
            await self._record_error(crawl_id, f"No indexable content or links found at {record.url}")
            return 'dead_end'

        outcome = 'expanded_only'
        if content:
            doc = UrlSearchDoc(
                crawl_id=crawl_id,
                url=record.url,
                base_url=record.base_url,
                content=content,
                distance=record.distance,
                content_type=document.content_type,
                title=document.title
            )
            if self.submitter.submit(doc):
                outcome = 'indexed'

        await self._expand(record, links, token, log)
        return outcome

    async def _expand(self, record: FrontierRecord, links: List[str],
                      token: CancellationToken, log) -> int:
        """Mark and dispatch child records while budget, time and cancellation allow."""
        crawl_id = record.crawl_id
        if not links:
            return 0

        if record.distance + 1 > record.bounds.max_distance:
            log.debug(f"Not expanding {record.url}: children would exceed maxDistance")
            await self._record_stop_reason(crawl_id, StopReason.MAX_DISTANCE)
            return 0

        dispatched = 0
        for link in links:
            if self.clock() >= record.deadline_millis or await self._shutdown_requested(crawl_id, token):
                break
            if record.bounds.max_urls > 0:
                remaining_slots = record.bounds.max_urls - await self.state_store.visited_count(crawl_id)
                if remaining_slots <= 0:
                    break
            if await self.state_store.try_mark_visited(crawl_id, link):
                await self.frontier.publish(record.child(link))
                dispatched += 1

        log.info(f"Dispatched {dispatched} of {len(links)} links from {record.url} "
                 f"at distance {record.distance + 1}")
        if self.monitor:
            self.monitor.record_dispatched(dispatched)
        return dispatched

    async def _shutdown_requested(self, crawl_id: str, token: CancellationToken) -> bool:
        if token.is_cancelled:
            return True
        return await self.state_store.is_stop_requested(crawl_id)

    async def _write_status(self, crawl_id: str, status: CrawlStatus):
        try:
            await self.state_store.write_status(crawl_id, status)
        except Exception as e:
            self.logger.error(f"Failed to write status for crawl {crawl_id}: {e}")

    async def _record_error(self, crawl_id: str, message: str):
        try:
            await self.state_store.record_error(crawl_id, message)
        except Exception as e:
            self.logger.error(f"Failed to record error for crawl {crawl_id}: {e}")

    async def _record_stop_reason(self, crawl_id: str, reason: StopReason):
        try:
            await self.state_store.record_stop_reason(crawl_id, reason)
        except Exception as e:
            self.logger.error(f"Failed to record stop reason for crawl {crawl_id}: {e}")
