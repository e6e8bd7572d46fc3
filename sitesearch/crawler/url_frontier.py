"""
URL Frontier: the work channel that distributes FrontierRecords across workers.

Records live in a Redis list. A worker receives a record by atomically moving it
into its own processing list and acknowledges it by removing it from there once
fully processed, so a worker that dies mid-record leaves the record recoverable
(at-least-once delivery).
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

import redis.asyncio as redis

from .models import FrontierRecord


@dataclass
class Delivery:
    """A received record together with its raw payload, needed for acknowledgement."""
    record: FrontierRecord
    payload: str
    worker_id: str


class URLFrontier:
    """
    FIFO frontier of FrontierRecords shared by every worker process.
    """

    def __init__(self, redis_client: redis.Redis, frontier_key: str = "sitesearch:frontier"):
        self.redis_client = redis_client
        self.frontier_key = frontier_key
        self.processing_prefix = f"{frontier_key}:processing:"
        self.logger = logging.getLogger(__name__)

    def _processing_key(self, worker_id: str) -> str:
        return f"{self.processing_prefix}{worker_id}"

    @staticmethod
    def _decode(value: Union[bytes, str]) -> str:
        return value.decode('utf-8') if isinstance(value, bytes) else value

    async def publish(self, record: FrontierRecord):
        """Append a record to the tail of the frontier."""
        await self.redis_client.lpush(self.frontier_key, json.dumps(record.to_dict()))
        self.logger.debug(f"Published to frontier: {record.url} (distance {record.distance})")

    async def receive(self, worker_id: str, timeout: float = 1.0) -> Optional[Delivery]:
        """
        Take the oldest record, waiting up to ``timeout`` seconds.
        Returns None if nothing arrived in time.
        """
        payload = await self.redis_client.blmove(
            self.frontier_key,
            self._processing_key(worker_id),
            timeout,
            src="RIGHT",
            dest="LEFT"
        )
        if payload is None:
            return None

        payload = self._decode(payload)
        try:
            record = FrontierRecord.from_dict(json.loads(payload))
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Dropping malformed frontier payload: {e}")
            await self.redis_client.lrem(self._processing_key(worker_id), 1, payload)
            return None

        return Delivery(record=record, payload=payload, worker_id=worker_id)

    async def ack(self, delivery: Delivery):
        """Acknowledge a fully processed record."""
        await self.redis_client.lrem(self._processing_key(delivery.worker_id), 1, delivery.payload)

    async def recover(self, worker_id: str) -> int:
        """
        Move records left unacknowledged by a previous run of ``worker_id`` back
        to the head of the frontier. Returns the number of records recovered.
        """
        recovered = 0
        while True:
            payload = await self.redis_client.lmove(
                self._processing_key(worker_id),
                self.frontier_key,
                src="LEFT",
                dest="RIGHT"
            )
            if payload is None:
                break
            recovered += 1

        if recovered:
            self.logger.info(f"Recovered {recovered} unacknowledged records for {worker_id}")
        return recovered

    async def size(self) -> int:
        return await self.redis_client.llen(self.frontier_key)
