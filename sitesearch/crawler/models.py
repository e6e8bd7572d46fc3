"""
Data model shared by the crawl orchestrator, the work channel and the search layer.
"""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class InvalidCrawlRequest(ValueError):
    """Raised when a crawl request carries an unusable URL or bounds."""
    pass


class StopReason(Enum):
    """Terminal condition that stops a crawl branch or the whole crawl."""
    MAX_DISTANCE = "maxDistance"
    MAX_URLS = "maxUrls"
    TIMEOUT = "timeout"
    USER_INITIATED = "userInitiated"


@dataclass(frozen=True)
class CrawlBounds:
    """Limits fixed once at crawl start."""
    max_distance: int
    max_seconds: int
    max_urls: int = 0  # 0 = unbounded

    def to_dict(self) -> dict:
        return {
            'max_distance': self.max_distance,
            'max_seconds': self.max_seconds,
            'max_urls': self.max_urls
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CrawlBounds':
        return cls(
            max_distance=int(data['max_distance']),
            max_seconds=int(data['max_seconds']),
            max_urls=int(data.get('max_urls', 0))
        )


@dataclass
class CrawlRequest:
    """A crawl as submitted by a caller."""
    url: str
    max_distance: int
    max_seconds: int
    max_urls: int = 0

    def validate(self):
        """Check the bounds. The URL itself is validated when the crawl starts."""
        if self.max_distance < 0:
            raise InvalidCrawlRequest("maxDistance must be >= 0")
        if self.max_seconds <= 0:
            raise InvalidCrawlRequest("maxSeconds must be > 0")
        if self.max_urls < 0:
            raise InvalidCrawlRequest("maxUrls must be >= 0")

    @property
    def bounds(self) -> CrawlBounds:
        return CrawlBounds(
            max_distance=self.max_distance,
            max_seconds=self.max_seconds,
            max_urls=self.max_urls
        )


@dataclass(frozen=True)
class FrontierRecord:
    """One unit of dispatchable crawl work: one URL at one distance from the seed."""
    crawl_id: str
    base_url: str
    url: str
    distance: int
    bounds: CrawlBounds
    start_time_millis: int

    @property
    def deadline_millis(self) -> int:
        return self.start_time_millis + self.bounds.max_seconds * 1000

    @classmethod
    def seed(cls, crawl_id: str, request: CrawlRequest,
             start_time_millis: Optional[int] = None) -> 'FrontierRecord':
        """Create the distance-0 record for a crawl."""
        return cls(
            crawl_id=crawl_id,
            base_url=request.url,
            url=request.url,
            distance=0,
            bounds=request.bounds,
            start_time_millis=start_time_millis if start_time_millis is not None else now_millis()
        )

    def child(self, url: str) -> 'FrontierRecord':
        """Derive the record for a link found on this record's page."""
        return replace(self, url=url, distance=self.distance + 1)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'crawl_id': self.crawl_id,
            'base_url': self.base_url,
            'url': self.url,
            'distance': self.distance,
            'bounds': self.bounds.to_dict(),
            'start_time_millis': self.start_time_millis
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FrontierRecord':
        """Create FrontierRecord from dictionary."""
        return cls(
            crawl_id=data['crawl_id'],
            base_url=data['base_url'],
            url=data['url'],
            distance=int(data['distance']),
            bounds=CrawlBounds.from_dict(data['bounds']),
            start_time_millis=int(data['start_time_millis'])
        )


@dataclass
class CrawlStatus:
    """Live progress of one crawl, as kept in the shared state store."""
    distance: int = 0
    start_time_millis: int = 0
    last_modified_millis: int = 0
    num_pages: int = 0
    stop_reason: Optional[StopReason] = None
    error_message: Optional[str] = None
    max_time_millis: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'distance': self.distance,
            'start_time_millis': self.start_time_millis,
            'last_modified_millis': self.last_modified_millis,
            'num_pages': self.num_pages,
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'error_message': self.error_message,
            'max_time_millis': self.max_time_millis
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlStatus':
        stop_reason = data.get('stop_reason')
        return cls(
            distance=int(data.get('distance', 0)),
            start_time_millis=int(data.get('start_time_millis', 0)),
            last_modified_millis=int(data.get('last_modified_millis', 0)),
            num_pages=int(data.get('num_pages', 0)),
            stop_reason=StopReason(stop_reason) if stop_reason else None,
            error_message=data.get('error_message'),
            max_time_millis=int(data.get('max_time_millis', 0))
        )


@dataclass(frozen=True)
class UrlSearchDoc:
    """A fetched page, ready to be written to the search index."""
    crawl_id: str
    url: str
    base_url: str
    content: str
    distance: int
    content_type: Optional[str] = None
    title: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """JSON body sent to the search index."""
        return {
            'crawlId': self.crawl_id,
            'url': self.url,
            'baseUrl': self.base_url,
            'content': self.content,
            'title': self.title or '',
            'distance': self.distance,
            'contentType': self.content_type
        }


@dataclass(frozen=True)
class SearchResultDto:
    url: str
    snippet: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {'url': self.url, 'snippet': self.snippet}
