"""
Turns raw index hits into the result list returned by the search endpoint.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from aiohttp import ClientError

from ..crawler.models import SearchResultDto
from ..storage.search_index import ElasticSearchIndex, SearchIndexError
from ..utils.monitoring import CrawlerMonitor


ARTICLE_PATH_MARKERS = ('/article/', '/news/')
ARTICLE_QUERY_PATTERN = re.compile(r'(?:^|&)(?:docid|articleid|newsid|storyid|id)=\d+', re.IGNORECASE)
DATE_PATH_PATTERN = re.compile(r'/\d{4}/\d{2}/\d{2}/')
LONG_NUMBER_SEGMENT = re.compile(r'\d{6,}')


def path_segments(url: str) -> List[str]:
    return [segment for segment in urlparse(url).path.split('/') if segment]


def is_homepage(url: str) -> bool:
    return urlparse(url).path in ('', '/')


def looks_like_article(url: str) -> bool:
    """URL-pattern heuristic separating content pages from index/listing pages."""
    parsed = urlparse(url)
    lower = url.lower()
    if any(marker in lower for marker in ARTICLE_PATH_MARKERS):
        return True
    if ARTICLE_QUERY_PATTERN.search(parsed.query):
        return True
    if DATE_PATH_PATTERN.search(parsed.path if parsed.path.endswith('/') else parsed.path + '/'):
        return True
    segments = path_segments(url)
    if any(LONG_NUMBER_SEGMENT.fullmatch(segment) for segment in segments):
        return True
    return len(segments) >= 3


def _first_fragment(highlight: Dict[str, Any], field: str) -> Optional[str]:
    fragments = highlight.get(field)
    if isinstance(fragments, list):
        return fragments[0] if fragments else None
    return fragments or None


def extract_snippet(hit: Dict[str, Any]) -> str:
    """Title highlight if present, else content highlight, else empty."""
    highlight = hit.get('highlight') or {}
    return _first_fragment(highlight, 'title') or _first_fragment(highlight, 'content') or ''


def rank_hits(hits: List[Dict[str, Any]], max_results: int = 50) -> List[SearchResultDto]:
    """
    Deduplicate, filter and order raw hits.

    Hits without a URL, repeated URLs and homepages are dropped. Article-like
    URLs come first, the rest after, each group in index order.
    """
    articles = []
    others = []
    seen = set()

    for hit in hits:
        source = hit.get('_source') or {}
        url = source.get('url')
        if not url or url in seen:
            continue
        seen.add(url)
        if is_homepage(url):
            continue

        result = SearchResultDto(url=url, snippet=extract_snippet(hit))
        if looks_like_article(url):
            articles.append(result)
        else:
            others.append(result)

    return (articles + others)[:max_results]


class SearchRanker:
    """Queries the index and ranks what comes back."""

    def __init__(self, index: ElasticSearchIndex, max_results: int = 50, candidate_size: int = 100,
                 monitor: Optional[CrawlerMonitor] = None):
        self.index = index
        self.max_results = max_results
        self.candidate_size = candidate_size
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

    def build_query(self, query: str) -> Dict[str, Any]:
        return {
            'size': self.candidate_size,
            'query': {
                'multi_match': {
                    'query': query,
                    'fields': ['title^3', 'content'],
                    'operator': 'and'
                }
            },
            'highlight': {
                'pre_tags': ['<em>'],
                'post_tags': ['</em>'],
                'fields': {'title': {}, 'content': {}}
            }
        }

    async def search(self, query: str) -> List[SearchResultDto]:
        if not query or not query.strip():
            return []

        if self.monitor:
            self.monitor.record_search()

        try:
            response = await self.index.query(self.build_query(query.strip()))
        except (SearchIndexError, ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Search for {query!r} failed: {e}")
            return []

        hits = (response.get('hits') or {}).get('hits') or []
        results = rank_hits(hits, self.max_results)
        self.logger.debug(f"Search {query!r}: {len(hits)} hits, {len(results)} results")
        return results
