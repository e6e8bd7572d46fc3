"""
Crawl intake helpers: seed URL normalization, crawl ids and status wire format.
"""

import ipaddress
import random
import string
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from ..crawler.models import CrawlRequest, CrawlStatus, InvalidCrawlRequest


CRAWL_ID_LENGTH = 6
CRAWL_ID_ALPHABET = string.ascii_letters + string.digits
HUMAN_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def generate_crawl_id(length: int = CRAWL_ID_LENGTH) -> str:
    return ''.join(random.choices(CRAWL_ID_ALPHABET, k=length))


def _is_ip_or_localhost(host: str) -> bool:
    if host == 'localhost':
        return True
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def normalize_url(url: Optional[str]) -> str:
    """
    Give a user-supplied seed URL a scheme and a ``www.`` host.

    ``example.com/path`` becomes ``https://www.example.com/path``. Unparseable
    input is returned trimmed but otherwise as is; validation happens when the
    crawl starts.
    """
    url = (url or '').strip()
    if not url.startswith(('http://', 'https://')):
        url = f"https://{url}"

    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return url
    if not host or host.startswith('www.') or _is_ip_or_localhost(host):
        return url

    netloc = f"www.{host}"
    if port is not None:
        netloc = f"{netloc}:{port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, ''))


def _int_field(payload: Dict[str, Any], name: str, default: Optional[int] = None) -> int:
    value = payload.get(name, default)
    if value is None:
        raise InvalidCrawlRequest(f"{name} is required")
    if isinstance(value, bool):
        raise InvalidCrawlRequest(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidCrawlRequest(f"{name} must be an integer")


def parse_crawl_request(payload: Dict[str, Any]) -> CrawlRequest:
    """Build a CrawlRequest from the JSON body of a crawl submission."""
    if not isinstance(payload, dict):
        raise InvalidCrawlRequest("request body must be a JSON object")
    request = CrawlRequest(
        url=normalize_url(payload.get('url')),
        max_distance=_int_field(payload, 'maxDistance'),
        max_seconds=_int_field(payload, 'maxSeconds'),
        max_urls=_int_field(payload, 'maxUrls', 0)
    )
    request.validate()
    return request


def _human_time(millis: int) -> Optional[str]:
    if not millis:
        return None
    return datetime.fromtimestamp(millis / 1000).strftime(HUMAN_TIME_FORMAT)


def status_to_wire(status: CrawlStatus) -> Dict[str, Any]:
    """Status as returned by the status endpoint: raw millis plus readable timestamps."""
    return {
        'distance': status.distance,
        'numPages': status.num_pages,
        'stopReason': status.stop_reason.value if status.stop_reason else None,
        'errorMessage': status.error_message,
        'startTimeMillis': status.start_time_millis,
        'lastModifiedMillis': status.last_modified_millis,
        'maxTimeMillis': status.max_time_millis,
        'startTime': _human_time(status.start_time_millis),
        'lastModified': _human_time(status.last_modified_millis)
    }
