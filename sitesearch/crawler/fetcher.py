"""
Web page fetcher with retry/backoff, accessibility pre-check and a coarse robots.txt check.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout


ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
HTML_CONTENT_TYPES = (
    'text/html',
    'application/xhtml+xml',
    'text/xml',
    'application/xml',
    'text/plain'
)


class FetchError(Exception):
    """Raised when a URL could not be fetched within the allowed attempts."""

    def __init__(self, url: str, attempts: int, last_error: BaseException):
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {last_error!r}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class UnsupportedContentError(Exception):
    """Raised for a response whose Content-Type is not a page we can parse. Never retried."""

    def __init__(self, url: str, content_type: str):
        super().__init__(f"Skipping non-HTML content at {url} ({content_type})")
        self.url = url
        self.content_type = content_type


@dataclass
class FetchResult:
    """Result of a successful fetch."""
    url: str
    status_code: int
    html: str
    content_type: Optional[str] = None
    fetch_time: float = 0.0
    truncated: bool = False


@dataclass
class AccessibilityResult:
    accessible: bool
    reason: Optional[str] = None


class RobotsChecker:
    """
    Best-effort robots.txt lookup.

    Only answers whether the site disallows everything (a ``disallow: /`` line);
    this is not a robots.txt policy engine.
    """

    def __init__(self, timeout: float = 10, cache_ttl: int = 3600):
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.robots_cache: Dict[str, Tuple[bool, float]] = {}
        self.logger = logging.getLogger(__name__)

    def _get_origin(self, url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def disallows_all(self, url: str, session: ClientSession) -> bool:
        origin = self._get_origin(url)
        current_time = time.time()

        cached = self.robots_cache.get(origin)
        if cached and current_time - cached[1] < self.cache_ttl:
            return cached[0]

        robots_url = urljoin(origin, '/robots.txt')
        try:
            text = await self._fetch_robots_txt(robots_url, session)
        except (ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Could not fetch robots.txt for {origin}: {e}")
            # If we can't fetch robots.txt, allow by default
            return False

        disallowed = text is not None and 'disallow: /' in text.lower()
        self.robots_cache[origin] = (disallowed, current_time)
        return disallowed

    async def _fetch_robots_txt(self, robots_url: str, session: ClientSession) -> Optional[str]:
        async with session.get(robots_url, timeout=ClientTimeout(total=self.timeout)) as response:
            if response.status != 200:
                return None
            return await response.text(errors='ignore')


class WebFetcher:
    """
    Fetches web pages over a shared aiohttp session.

    ``fetch`` retries failed attempts with exponential backoff and raises
    FetchError with the last error once the attempts are used up.
    """

    def __init__(self, user_agent: str, request_timeout: float = 60,
                 accessibility_timeout: float = 10, robots_timeout: float = 10,
                 max_retries: int = 3, retry_backoff_base: float = 1.0,
                 max_content_bytes: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.accessibility_timeout = accessibility_timeout
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.max_content_bytes = max_content_bytes

        self.logger = logging.getLogger(__name__)
        self.robots_checker = RobotsChecker(timeout=robots_timeout)
        self.session: Optional[ClientSession] = None
        self._sleep = asyncio.sleep

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'robots_disallowed': 0,
            'skipped_content': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            headers = {'User-Agent': self.user_agent, 'Accept': ACCEPT_HEADER}
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL, retrying on failure.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult with the decoded page body

        Raises:
            FetchError: every attempt failed; ``last_error`` holds the final failure
            UnsupportedContentError: the response is not HTML; raised on the first attempt
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._fetch_once(url)
            except (ClientError, asyncio.TimeoutError) as e:
                last_error = e
                self.stats['failed_requests'] += 1
                self.logger.warning(f"Fetch attempt {attempt}/{self.max_retries} failed for {url}: {e!r}")
                if attempt < self.max_retries:
                    await self._sleep(self.retry_backoff_base * 2 ** (attempt - 1))

        raise FetchError(url, self.max_retries, last_error) from last_error

    async def _fetch_once(self, url: str) -> FetchResult:
        start_time = time.time()
        self.stats['total_requests'] += 1

        async with self.session.get(url) as response:
            response.raise_for_status()
            content_type = response.headers.get('content-type', '').lower() or None
            if content_type and not self._is_html_content(content_type):
                self.stats['skipped_content'] += 1
                raise UnsupportedContentError(url, content_type)
            html, truncated = await self._read_content_safely(response)

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(html)
        fetch_time = time.time() - start_time
        self.logger.debug(f"Fetched {url}: {response.status} ({len(html)} chars) in {fetch_time:.2f}s")
        return FetchResult(
            url=str(response.url),
            status_code=response.status,
            html=html,
            content_type=content_type,
            fetch_time=fetch_time,
            truncated=truncated
        )

    @staticmethod
    def _is_html_content(content_type: str) -> bool:
        return any(html_type in content_type for html_type in HTML_CONTENT_TYPES)

    async def _read_content_safely(self, response) -> Tuple[str, bool]:
        """
        Read the response body, keeping at most ``max_content_bytes``.

        Returns:
            The decoded body and whether it was truncated
        """
        content_bytes = b''
        truncated = False
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > self.max_content_bytes:
                content_bytes = content_bytes[:self.max_content_bytes]
                truncated = True
                self.logger.warning(f"Content exceeded size limit, truncating: {response.url}")
                break

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding), truncated
        except (UnicodeDecodeError, LookupError):
            return content_bytes.decode('utf-8', errors='ignore'), truncated

    async def check_accessibility(self, url: str) -> AccessibilityResult:
        """Quick reachability probe: any status >= 400 or transport error is inaccessible."""
        try:
            async with self.session.get(
                url, timeout=ClientTimeout(total=self.accessibility_timeout)
            ) as response:
                if response.status >= 400:
                    return AccessibilityResult(False, f"URL {url} is not accessible (HTTP {response.status})")
                return AccessibilityResult(True)
        except (ClientError, asyncio.TimeoutError) as e:
            return AccessibilityResult(False, f"URL {url} is not accessible ({e!r})")

    async def robots_disallows(self, url: str) -> bool:
        disallowed = await self.robots_checker.disallows_all(url, self.session)
        if disallowed:
            self.stats['robots_disallowed'] += 1
            self.logger.info(f"robots.txt at {url} disallows crawling")
        return disallowed

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
