"""
Storage backends: shared crawl state and the search index.
"""

from .state_store import CrawlStateStore
from .search_index import ElasticSearchIndex, SearchIndexError

__all__ = ['CrawlStateStore', 'ElasticSearchIndex', 'SearchIndexError']
