"""
Elasticsearch-compatible search index client over aiohttp.
"""

import base64
import hashlib
import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..crawler.models import UrlSearchDoc


class SearchIndexError(Exception):
    """Raised when the search index rejects a request."""
    pass


class ElasticSearchIndex:
    """
    Minimal client for one index: add documents and run query-DSL searches.

    Documents are keyed by a hash of their URL, so indexing a URL again
    overwrites the earlier document.
    """

    def __init__(self, base_url: str, api_key: str, index: str,
                 refresh: bool = False, request_timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.index = index
        self.refresh = refresh
        self.request_timeout = request_timeout
        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None
        self._auth = base64.b64encode(api_key.encode('utf-8')).decode('ascii')

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={
                    'Content-Type': 'application/json',
                    'Authorization': f"Basic {self._auth}"
                }
            )
            self.logger.info(f"Search index client started for {self.base_url}/{self.index}")

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("Search index client closed")

    @staticmethod
    def document_id(url: str) -> str:
        return hashlib.sha1(url.encode('utf-8')).hexdigest()

    async def index_document(self, doc: UrlSearchDoc) -> bool:
        """
        Add or replace the document for ``doc.url``.

        Returns False when the index answers with a non-success status;
        transport errors propagate.
        """
        url = f"{self.base_url}/{self.index}/_doc/{self.document_id(doc.url)}"
        params = {'refresh': 'true'} if self.refresh else None

        async with self.session.put(url, json=doc.to_document(), params=params) as response:
            if response.status >= 300:
                body = await response.text()
                self.logger.error(f"Failed to index {doc.url}: {response.status} {body[:200]}")
                return False

        self.logger.debug(f"Indexed {doc.url}")
        return True

    async def query(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Run a search request and return the decoded response."""
        url = f"{self.base_url}/{self.index}/_search"
        async with self.session.post(url, json=body) as response:
            if response.status >= 300:
                text = await response.text()
                raise SearchIndexError(f"Search failed: {response.status} {text[:200]}")
            return await response.json()

    async def ping(self) -> bool:
        async with self.session.get(self.base_url) as response:
            return response.status < 300
