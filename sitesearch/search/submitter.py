"""
Bounded, fire-and-forget submission of documents to the search index.
"""

import asyncio
import logging
from typing import List, Optional

from ..crawler.models import UrlSearchDoc
from ..storage.search_index import ElasticSearchIndex
from ..utils.monitoring import CrawlerMonitor


class IndexingSubmitter:
    """
    Worker pool that writes UrlSearchDocs to the index.

    ``submit`` only enqueues. Failures are logged and dropped: indexing never
    fails a crawl.
    """

    def __init__(self, index: ElasticSearchIndex, pool_size: int = 4, queue_size: int = 1000,
                 monitor: Optional[CrawlerMonitor] = None):
        self.index = index
        self.pool_size = pool_size
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)
        self.workers: List[asyncio.Task] = []
        self.is_running = False

    async def start(self):
        if self.is_running:
            return
        self.is_running = True
        self.workers = [
            asyncio.create_task(self._worker(f"indexer-{i}"))
            for i in range(self.pool_size)
        ]
        self.logger.info(f"Indexing submitter started with {self.pool_size} workers")

    def submit(self, doc: UrlSearchDoc) -> bool:
        """
        Queue a document for indexing.
        Returns False if the submitter is stopped or its queue is full.
        """
        if not self.is_running:
            self.logger.warning(f"Indexing submitter not running, dropping {doc.url}")
            self._rejected()
            return False
        try:
            self.queue.put_nowait(doc)
        except asyncio.QueueFull:
            self.logger.warning(f"Indexing queue full, dropping {doc.url}")
            self._rejected()
            return False
        return True

    def _rejected(self):
        if self.monitor:
            self.monitor.record_submission_rejected()

    async def _worker(self, worker_id: str):
        while True:
            doc = await self.queue.get()
            try:
                if await self.index.index_document(doc):
                    if self.monitor:
                        self.monitor.record_document_indexed()
                elif self.monitor:
                    self.monitor.record_index_failure()
            except Exception as e:
                self.logger.error(f"{worker_id} failed to index {doc.url}: {e}")
                if self.monitor:
                    self.monitor.record_index_failure()
            finally:
                self.queue.task_done()

    async def drain(self):
        """Stop accepting work, wait for queued documents, then stop the workers."""
        if not self.is_running:
            return
        self.is_running = False
        self.logger.info(f"Draining {self.queue.qsize()} queued index submissions")
        await self.queue.join()
        await self._cancel_workers()

    async def stop(self):
        """Stop immediately, abandoning queued documents."""
        self.is_running = False
        await self._cancel_workers()

    async def _cancel_workers(self):
        for worker in self.workers:
            if not worker.done():
                worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()
        self.logger.info("Indexing submitter stopped")
