"""Outbound link extraction and bounded linked-content scraping."""

import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from services.shared.errors import ScrapeError
from .pacing import Pacer

if TYPE_CHECKING:
    from .scrapers.base import ScrapeOptions, Scraper

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r'https?://[^\s<>"{}|\\^`\[\]]+', re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r'[.,;:!?)\]}>]+$')

SKIP_DOMAINS = [
    'twitter.com',
    'x.com',
    't.co',
    'twimg.com',
    'instagram.com',
    'facebook.com',
    'fb.com',
    'linkedin.com',
    'pinterest.com',
    'pin.it',
    'tiktok.com',
    'youtube.com',
    'youtu.be',
    'vimeo.com',
]

SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.webp', '.svg',
    '.mp4', '.webm', '.mov', '.avi', '.mp3', '.wav',
)

ARXIV_PDF_PATTERN = re.compile(r'arxiv\.org/pdf/', re.IGNORECASE)


def _is_skipped_host(host: str) -> bool:
    return any(host == domain or host.endswith('.' + domain) for domain in SKIP_DOMAINS)


def extract_links(text: Optional[str]) -> List[str]:
    """Extract outbound article links from free text.

    Social platform, CDN and media-file links are dropped. Order of first
    appearance is preserved and exact duplicates removed.
    """
    if not text:
        return []

    links: List[str] = []
    seen = set()
    for match in URL_PATTERN.findall(text):
        url = TRAILING_PUNCTUATION.sub('', match)
        lowered = url.lower()
        try:
            host = (urlsplit(lowered).hostname or '')
        except ValueError:
            continue
        if not host or _is_skipped_host(host):
            continue
        if urlsplit(lowered).path.endswith(SKIP_EXTENSIONS):
            continue
        if url not in seen:
            seen.add(url)
            links.append(url)
    return links


def merge_links(*groups: Iterable[str]) -> List[str]:
    """Concatenate link lists, keeping the first occurrence of each."""
    merged: List[str] = []
    seen = set()
    for group in groups:
        for link in group:
            if link not in seen:
                seen.add(link)
                merged.append(link)
    return merged


def arxiv_abstract_url(url: str) -> str:
    """Map an arXiv PDF link back to its abstract page."""
    if ARXIV_PDF_PATTERN.search(url):
        abstract = url.replace('/pdf/', '/abs/', 1)
        return re.sub(r'\.pdf$', '', abstract, flags=re.IGNORECASE)
    return url


class LinkedContentScraper:
    """Scrapes links found in a captured post, one at a time.

    At most ``max_links`` links are visited with ``delay`` seconds between
    requests. A failing link is recorded with an ``error`` and never aborts
    the capture.
    """

    def __init__(self, document_scraper: "Scraper", web_scraper: "Scraper",
                 max_links: int = 5, delay: float = 0.5, max_body_chars: int = 15000,
                 pacer: Optional[Pacer] = None):
        self.document_scraper = document_scraper
        self.web_scraper = web_scraper
        self.max_links = max_links
        self.max_body_chars = max_body_chars
        self.pacer = pacer or Pacer(delay, name="linked-content")

    def _strategy_for(self, url: str) -> "Scraper":
        if self.document_scraper.can_handle(url):
            return self.document_scraper
        return self.web_scraper

    async def scrape_link(self, url: str, options: Optional["ScrapeOptions"] = None) -> Dict[str, Any]:
        target = arxiv_abstract_url(url)
        scraper = self._strategy_for(target)
        if scraper is self.document_scraper:
            content_type = 'arxiv' if 'arxiv.org/abs/' in target.lower() else 'pdf'
        else:
            content_type = 'article'

        entry: Dict[str, Any] = {
            'url': target,
            'title': None,
            'description': None,
            'bodyText': None,
            'contentType': content_type,
            'scrapedAt': datetime.now(timezone.utc).isoformat(),
        }
        try:
            content = await scraper.scrape(target, options)
        except ScrapeError as e:
            logger.warning(f"Linked content scrape failed for {target}: {e}")
            entry['error'] = str(e)
            return entry

        entry['title'] = content.title
        entry['description'] = content.description
        entry['bodyText'] = (content.body_text or '')[:self.max_body_chars] or None
        if content.platform_data.get('documentError'):
            entry['error'] = content.platform_data['documentError']
        return entry

    async def scrape_links(self, urls: List[str], options: Optional["ScrapeOptions"] = None) -> List[Dict[str, Any]]:
        results = []
        for url in urls[:self.max_links]:
            await self.pacer.wait()
            results.append(await self.scrape_link(url, options))
        logger.info(f"Scraped {len(results)} linked pages "
                    f"({sum(1 for r in results if 'error' in r)} failed)")
        return results
