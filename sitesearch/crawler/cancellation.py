"""
Cooperative cancellation for crawl dispatch trees.
"""

import asyncio
import logging
from collections import OrderedDict


class CancellationToken:
    """
    Shutdown flag scoped to one crawl.

    Checked by workers at the top of each record and before each child dispatch;
    it never interrupts an in-flight fetch.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


class CancellationScope:
    """
    Hands out one token per crawl id to the workers of this process.

    At most ``max_tokens`` are kept; the least recently used one is dropped first.
    A dropped token loses nothing: a stopped crawl is also flagged in the state
    store, which workers check alongside the token.
    """

    def __init__(self, max_tokens: int = 1024):
        self.max_tokens = max_tokens
        self._tokens: OrderedDict = OrderedDict()
        self.logger = logging.getLogger(__name__)

    def token_for(self, crawl_id: str) -> CancellationToken:
        token = self._tokens.get(crawl_id)
        if token is None:
            token = CancellationToken()
            self._tokens[crawl_id] = token
            while len(self._tokens) > self.max_tokens:
                self._tokens.popitem(last=False)
        else:
            self._tokens.move_to_end(crawl_id)
        return token

    def __len__(self) -> int:
        return len(self._tokens)

    def cancel(self, crawl_id: str) -> CancellationToken:
        token = self.token_for(crawl_id)
        token.cancel()
        self.logger.info(f"Cancellation requested for crawl {crawl_id}")
        return token

    def reset(self, crawl_id: str):
        """Forget the token of a crawl id that is being restarted."""
        self._tokens.pop(crawl_id, None)
