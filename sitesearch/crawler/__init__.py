"""
Crawler core components.
"""

from .models import (
    CrawlBounds, CrawlRequest, CrawlStatus, FrontierRecord, StopReason,
    UrlSearchDoc, SearchResultDto, InvalidCrawlRequest
)
from .url_frontier import URLFrontier, Delivery
from .fetcher import WebFetcher, FetchResult, FetchError
from .parser import ContentParser, Document

__all__ = [
    'CrawlBounds', 'CrawlRequest', 'CrawlStatus', 'FrontierRecord', 'StopReason',
    'UrlSearchDoc', 'SearchResultDto', 'InvalidCrawlRequest',
    'URLFrontier', 'Delivery',
    'WebFetcher', 'FetchResult', 'FetchError',
    'ContentParser', 'Document'
]
