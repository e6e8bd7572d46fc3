"""
Crawler scheduler: wires the components together and runs the frontier workers.
"""

import asyncio
import logging
import socket
from typing import List, Optional

import redis.asyncio as redis

from .cancellation import CancellationScope
from .fetcher import WebFetcher
from .models import CrawlRequest, CrawlStatus, StopReason, now_millis
from .orchestrator import CrawlOrchestrator
from .parser import ContentParser
from .url_frontier import URLFrontier
from ..search.ranker import SearchRanker
from ..search.submitter import IndexingSubmitter
from ..storage.search_index import ElasticSearchIndex
from ..storage.state_store import CrawlStateStore
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class CrawlerScheduler:
    """
    Owns every crawler component and their lifecycle.

    Workers are asyncio tasks that pull one record at a time from the shared
    frontier; several processes may run schedulers against the same Redis.
    """

    def __init__(self, config: Config, redis_client: Optional[redis.Redis] = None,
                 search_index: Optional[ElasticSearchIndex] = None,
                 fetcher: Optional[WebFetcher] = None,
                 monitor: Optional[CrawlerMonitor] = None,
                 node_id: Optional[str] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.node_id = node_id or socket.gethostname()

        self.redis_client = redis_client
        self.search_index = search_index
        self.fetcher = fetcher
        self.monitor = monitor or CrawlerMonitor()

        self.state_store: Optional[CrawlStateStore] = None
        self.url_frontier: Optional[URLFrontier] = None
        self.submitter: Optional[IndexingSubmitter] = None
        self.orchestrator: Optional[CrawlOrchestrator] = None
        self.ranker: Optional[SearchRanker] = None
        self.cancellation = CancellationScope()

        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self.receive_timeout = 1.0
        self._background: set = set()

    async def initialize(self):
        """Initialize all crawler components."""
        try:
            if self.redis_client is None:
                self.redis_client = redis.Redis(
                    host=self.config.redis.host,
                    port=self.config.redis.port,
                    db=self.config.redis.db,
                    password=self.config.redis.password,
                    decode_responses=True
                )
            await self.redis_client.ping()
            self.logger.info("Redis connection established")

            self.state_store = CrawlStateStore(self.redis_client)
            self.url_frontier = URLFrontier(self.redis_client, self.config.redis.frontier_key)

            if self.fetcher is None:
                crawler = self.config.crawler
                self.fetcher = WebFetcher(
                    user_agent=crawler.user_agent,
                    request_timeout=crawler.request_timeout,
                    accessibility_timeout=crawler.accessibility_timeout,
                    robots_timeout=crawler.robots_timeout,
                    max_retries=crawler.max_retries,
                    retry_backoff_base=crawler.retry_backoff_base,
                    max_content_bytes=crawler.max_content_bytes
                )
            await self.fetcher.start()

            if self.search_index is None:
                es = self.config.elasticsearch
                self.search_index = ElasticSearchIndex(
                    base_url=es.base_url,
                    api_key=es.api_key,
                    index=es.index,
                    refresh=es.refresh,
                    request_timeout=es.request_timeout
                )
            await self.search_index.start()

            self.submitter = IndexingSubmitter(
                self.search_index,
                pool_size=self.config.indexing.pool_size,
                queue_size=self.config.indexing.queue_size,
                monitor=self.monitor
            )
            await self.submitter.start()

            self.orchestrator = CrawlOrchestrator(
                state_store=self.state_store,
                fetcher=self.fetcher,
                parser=ContentParser(min_content_length=self.config.crawler.min_content_length),
                submitter=self.submitter,
                frontier=self.url_frontier,
                monitor=self.monitor,
                respect_robots_txt=self.config.crawler.respect_robots_txt
            )
            self.ranker = SearchRanker(
                self.search_index,
                max_results=self.config.search.max_results,
                candidate_size=self.config.search.candidate_size,
                monitor=self.monitor
            )

            self.logger.info("Crawler scheduler initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize crawler scheduler: {e}")
            raise

    async def start_workers(self, num_workers: Optional[int] = None):
        """Start frontier workers. Returns immediately; workers run until ``stop_workers``."""
        if self.is_running:
            self.logger.warning("Workers are already running")
            return

        num_workers = num_workers or self.config.crawler.num_workers
        self.is_running = True
        for i in range(num_workers):
            worker_id = f"{self.node_id}-worker-{i}"
            await self.url_frontier.recover(worker_id)
            self.workers.append(asyncio.create_task(self._worker(worker_id)))

        self.logger.info(f"Started {num_workers} frontier workers")

    async def _worker(self, worker_id: str):
        """
        Worker coroutine: receive, process, acknowledge. A failing record never
        stops the loop.
        """
        log = get_crawler_logger(__name__, worker_id=worker_id)
        log.debug(f"Worker {worker_id} started")

        while self.is_running:
            try:
                delivery = await self.url_frontier.receive(worker_id, timeout=self.receive_timeout)
                if delivery is None:
                    continue

                record = delivery.record
                token = self.cancellation.token_for(record.crawl_id)
                await self.orchestrator.process_record(record, token)
                # A record interrupted by cancellation stays unacknowledged for recovery
                await self.url_frontier.ack(delivery)

            except asyncio.CancelledError:
                log.debug(f"Worker {worker_id} cancelled")
                break
            except Exception as e:
                log.error(f"Worker {worker_id} error: {e}")
                await asyncio.sleep(1)  # Brief pause on error

        log.debug(f"Worker {worker_id} finished")

    async def stop_workers(self, grace_period: float = 30):
        """Stop taking new records and let in-flight ones finish within ``grace_period``."""
        if not self.workers:
            return
        self.logger.info("Stopping frontier workers...")
        self.is_running = False

        done, pending = await asyncio.wait(self.workers, timeout=grace_period)
        for worker in pending:
            worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()

    def submit_crawl(self, crawl_id: str, request: CrawlRequest) -> asyncio.Task:
        """Start a crawl in the background and return immediately."""
        self.cancellation.reset(crawl_id)
        task = asyncio.create_task(self._start_crawl(crawl_id, request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _start_crawl(self, crawl_id: str, request: CrawlRequest):
        try:
            await self.orchestrator.start_crawl(crawl_id, request)
        except Exception as e:
            self.logger.error(f"Failed to start crawl {crawl_id}: {e}", exc_info=True)

    async def stop_crawl(self, crawl_id: str, message: str = "Stopped by user") -> bool:
        """Stop a crawl. Returns False, without recording anything, for an unknown crawl id."""
        if await self.state_store.read_status(crawl_id) is None:
            self.logger.warning(f"Ignoring stop for unknown crawlId: {crawl_id}")
            return False
        token = self.cancellation.cancel(crawl_id)
        await self.orchestrator.stop_crawl(crawl_id, message, token)
        return True

    async def get_crawl_status(self, crawl_id: str) -> CrawlStatus:
        """
        Current status of a crawl; an unknown id yields a zeroed status.

        A crawl whose deadline passed without any worker recording a stop reason
        gets ``timeout`` recorded here.
        """
        try:
            status = await self.state_store.read_status(crawl_id)
        except Exception as e:
            self.logger.error(f"Failed to read status for crawl {crawl_id}: {e}")
            return CrawlStatus()

        if status is None:
            self.logger.warning(f"No status found for crawlId: {crawl_id}")
            return CrawlStatus()

        if status.stop_reason is None and status.max_time_millis and now_millis() >= status.max_time_millis:
            try:
                status = await self.state_store.record_stop_reason(crawl_id, StopReason.TIMEOUT)
            except Exception as e:
                self.logger.error(f"Failed to persist derived timeout for crawl {crawl_id}: {e}")
                status.stop_reason = StopReason.TIMEOUT
        return status

    async def search(self, query: str):
        return await self.ranker.search(query)

    async def close(self):
        """Close all connections and cleanup resources."""
        try:
            await self.stop_workers()

            if self._background:
                await asyncio.gather(*self._background, return_exceptions=True)

            if self.submitter:
                await self.submitter.drain()

            if self.fetcher:
                await self.fetcher.close()

            if self.search_index:
                await self.search_index.close()

            if self.redis_client:
                await self.redis_client.aclose()

            self.logger.info(f"Crawler scheduler closed, summary: {self.monitor.get_summary()}")

        except Exception as e:
            self.logger.error(f"Error during cleanup: {e}")
