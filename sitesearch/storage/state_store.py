"""
Shared crawl state kept in Redis: per-crawl status, visited-URL set and counter.

Every worker process reads and writes the same keys, so all crawl progress lives
here rather than in worker memory.
"""

import json
import logging
from typing import Callable, Optional, Union

import redis.asyncio as redis
from redis.exceptions import WatchError

from ..crawler.models import CrawlStatus, StopReason, now_millis


def _decode(value: Union[bytes, str, None]) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return value


class CrawlStateStore:
    """
    Per-crawl bookkeeping over Redis.

    Keys for crawl ``<id>``:
    - ``<id>.status``: JSON-encoded CrawlStatus
    - ``<id>.urls.count``: number of distinct URLs marked visited
    - ``<id>.visited``: set of visited URLs
    - ``<id>.stop``: present once a user stop was requested
    """

    def __init__(self, redis_client: redis.Redis, clock: Callable[[], int] = now_millis):
        self.redis_client = redis_client
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def status_key(crawl_id: str) -> str:
        return f"{crawl_id}.status"

    @staticmethod
    def count_key(crawl_id: str) -> str:
        return f"{crawl_id}.urls.count"

    @staticmethod
    def visited_key(crawl_id: str) -> str:
        return f"{crawl_id}.visited"

    @staticmethod
    def stop_key(crawl_id: str) -> str:
        return f"{crawl_id}.stop"

    async def init_crawl(self, crawl_id: str, start_time_millis: Optional[int] = None,
                         max_time_millis: int = 0) -> CrawlStatus:
        """Drop any previous state under this id and write a fresh status."""
        await self.redis_client.delete(
            self.status_key(crawl_id),
            self.count_key(crawl_id),
            self.visited_key(crawl_id),
            self.stop_key(crawl_id)
        )
        start = start_time_millis if start_time_millis is not None else self.clock()
        status = CrawlStatus(
            distance=0,
            start_time_millis=start,
            last_modified_millis=start,
            num_pages=0,
            stop_reason=None,
            max_time_millis=max_time_millis
        )
        await self.redis_client.set(self.status_key(crawl_id), json.dumps(status.to_dict()))
        self.logger.info(f"Initialized crawl state for {crawl_id}")
        return status

    async def read_status(self, crawl_id: str) -> Optional[CrawlStatus]:
        """Return the crawl's status, or None if the id is unknown."""
        raw = _decode(await self.redis_client.get(self.status_key(crawl_id)))
        if raw is None:
            return None
        status = CrawlStatus.from_dict(json.loads(raw))
        status.num_pages = max(status.num_pages, await self.visited_count(crawl_id))
        return status

    async def write_status(self, crawl_id: str, status: CrawlStatus) -> CrawlStatus:
        """
        Persist a status snapshot, stamping lastModified.

        The write is merged with what is stored: numPages and lastModified never go
        back, a recorded stop reason is kept, and an existing error message survives
        a snapshot that carries none.
        """
        def merge(stored: CrawlStatus) -> CrawlStatus:
            stored.distance = status.distance
            stored.num_pages = max(stored.num_pages, status.num_pages)
            if status.start_time_millis:
                stored.start_time_millis = stored.start_time_millis or status.start_time_millis
            if status.max_time_millis:
                stored.max_time_millis = stored.max_time_millis or status.max_time_millis
            if stored.stop_reason is None:
                stored.stop_reason = status.stop_reason
            if status.error_message:
                stored.error_message = status.error_message
            return stored

        return await self._update_status(crawl_id, merge)

    async def record_error(self, crawl_id: str, message: str) -> CrawlStatus:
        def merge(stored: CrawlStatus) -> CrawlStatus:
            stored.error_message = message
            return stored

        return await self._update_status(crawl_id, merge)

    async def record_stop_reason(self, crawl_id: str, reason: StopReason,
                                 message: Optional[str] = None) -> CrawlStatus:
        """Record a stop reason unless one was recorded before."""
        def merge(stored: CrawlStatus) -> CrawlStatus:
            if stored.stop_reason is None:
                stored.stop_reason = reason
            if message:
                stored.error_message = message
            return stored

        return await self._update_status(crawl_id, merge)

    async def _update_status(self, crawl_id: str,
                             merge: Callable[[CrawlStatus], CrawlStatus]) -> CrawlStatus:
        key = self.status_key(crawl_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = _decode(await pipe.get(key))
                    count = int(_decode(await pipe.get(self.count_key(crawl_id))) or 0)
                    stored = CrawlStatus.from_dict(json.loads(raw)) if raw else CrawlStatus()
                    previous_modified = stored.last_modified_millis
                    previous_pages = stored.num_pages

                    updated = merge(stored)
                    updated.num_pages = max(updated.num_pages, previous_pages, count)
                    updated.last_modified_millis = max(self.clock(), previous_modified)

                    pipe.multi()
                    pipe.set(key, json.dumps(updated.to_dict()))
                    await pipe.execute()
                    return updated
                except WatchError:
                    self.logger.debug(f"Concurrent status update for {crawl_id}, retrying")
                    continue

    async def visited_count(self, crawl_id: str) -> int:
        value = _decode(await self.redis_client.get(self.count_key(crawl_id)))
        return int(value) if value is not None else 0

    async def try_mark_visited(self, crawl_id: str, url: str) -> bool:
        """
        Atomically add ``url`` to the crawl's visited set.

        Returns True only for the first caller; that caller also bumps the visited
        counter and refreshes the status.
        """
        added = await self.redis_client.sadd(self.visited_key(crawl_id), url)
        if not added:
            return False

        count = await self.redis_client.incr(self.count_key(crawl_id))

        def merge(stored: CrawlStatus) -> CrawlStatus:
            stored.num_pages = max(stored.num_pages, count)
            return stored

        await self._update_status(crawl_id, merge)
        return True

    async def clear_visited(self, crawl_id: str):
        """Forget which URLs were seen. The visited counter is left as is."""
        await self.redis_client.delete(self.visited_key(crawl_id))
        self.logger.info(f"Cleared visited set for crawl {crawl_id}")

    async def request_stop(self, crawl_id: str):
        await self.redis_client.set(self.stop_key(crawl_id), "1")

    async def is_stop_requested(self, crawl_id: str) -> bool:
        return bool(await self.redis_client.exists(self.stop_key(crawl_id)))
