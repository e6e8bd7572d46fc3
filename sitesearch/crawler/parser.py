"""
HTML parsing: same-site link extraction and indexable text extraction.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup, Comment

from .fetcher import FetchResult


NON_NAVIGABLE_SCHEMES = ('mailto:', 'javascript:')
ARTICLE_SELECTOR = 'article, .article, [itemprop=articleBody]'


@dataclass
class Document:
    """A fetched page parsed into a tree."""
    url: str
    soup: BeautifulSoup
    content_type: Optional[str] = None

    @property
    def title(self) -> Optional[str]:
        og_title = self.soup.find('meta', attrs={'property': 'og:title'})
        if og_title and og_title.get('content', '').strip():
            return og_title['content'].strip()
        if self.soup.title and self.soup.title.string:
            return self.soup.title.string.strip()
        return None


class ContentParser:
    """
    Parses fetched HTML and derives the links to follow and the text to index.
    """

    def __init__(self, min_content_length: int = 50):
        self.min_content_length = min_content_length
        self.logger = logging.getLogger(__name__)
        self.whitespace_pattern = re.compile(r'\s+')

    def parse(self, fetch_result: FetchResult) -> Document:
        soup = BeautifulSoup(fetch_result.html, 'lxml')

        for script in soup(["script", "style", "noscript"]):
            script.decompose()
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        return Document(url=fetch_result.url, soup=soup, content_type=fetch_result.content_type)

    def extract_links(self, base_url: str, document: Document) -> List[str]:
        """
        Absolute links of the page that start with ``base_url``, in first-seen order.

        The check is a plain string prefix against the crawl's base URL, not a
        host comparison.
        """
        links = []
        seen = set()

        for anchor in document.soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.lower().startswith(NON_NAVIGABLE_SCHEMES):
                continue

            absolute_url, _ = urldefrag(urljoin(document.url, href))
            if absolute_url.lower().startswith(NON_NAVIGABLE_SCHEMES):
                continue
            if not absolute_url.startswith(base_url):
                continue
            if absolute_url in seen:
                continue

            seen.add(absolute_url)
            links.append(absolute_url)

        self.logger.debug(f"Extracted {len(links)} links from {document.url}")
        return links

    def extract_content(self, document: Document) -> str:
        """
        Indexable text of the page.

        Collects, in order, the title, the description and the article text
        (or all paragraphs when there is no article element). Short results get
        the full body text appended.
        """
        soup = document.soup
        parts = []

        title = document.title
        if title:
            parts.append(title)

        description = self._meta_content(soup, name='description') or \
            self._meta_content(soup, prop='og:description')
        if description:
            parts.append(description)

        articles = soup.select(ARTICLE_SELECTOR)
        if articles:
            parts.extend(article.get_text(separator=' ') for article in articles)
        else:
            parts.extend(p.get_text(separator=' ') for p in soup.find_all('p'))

        text = self._clean_text('\n'.join(part for part in parts if part))
        if len(text) < self.min_content_length:
            body = soup.body or soup
            body_text = self._clean_text(body.get_text(separator=' '))
            text = self._clean_text(f"{text} {body_text}")

        return text

    def _meta_content(self, soup: BeautifulSoup, name: Optional[str] = None,
                      prop: Optional[str] = None) -> Optional[str]:
        attrs = {'name': name} if name else {'property': prop}
        tag = soup.find('meta', attrs=attrs)
        if tag:
            content = tag.get('content', '').strip()
            return content or None
        return None

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
