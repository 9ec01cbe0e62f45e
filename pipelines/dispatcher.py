"""Scraper selection.

Strategies are walked in a fixed priority order; the first one that claims
the URL runs. The web scraper claims everything, so selection is total.
"""

import logging
import time
from typing import List, Optional

from observability.metrics import record_scrape
from services.shared.errors import ScrapeError
from .fetch import HttpFetcher
from .links import LinkedContentScraper
from .scrapers import DocumentScraper, ScrapedContent, ScrapeOptions, Scraper, SocialPostScraper, WebScraper
from .threads import MirrorClient, ThreadReconstructor

logger = logging.getLogger(__name__)


class ScraperDispatcher:
    """Runs exactly one strategy per URL."""

    def __init__(self, scrapers: List[Scraper]):
        if not scrapers:
            raise ValueError("At least one scraper is required")
        self.scrapers = list(scrapers)

    def select(self, url: str) -> Scraper:
        for scraper in self.scrapers:
            if scraper.can_handle(url):
                return scraper
        # Only reachable when the fallback strategy is missing from the list
        raise ValueError(f"No scraper can handle {url}")

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedContent:
        scraper = self.select(url)
        logger.info(f"Scraping {url} with {scraper.name} scraper")
        start_time = time.time()
        try:
            content = await scraper.scrape(url, options or ScrapeOptions())
        except ScrapeError as e:
            record_scrape(scraper.name, time.time() - start_time, error_kind=e.kind.value)
            raise
        record_scrape(scraper.name, time.time() - start_time)
        return content


def build_dispatcher(fetcher: HttpFetcher, max_body_chars: int = 5000,
                     mirror_api_url: str = "https://api.fxtwitter.com",
                     unroll_base_url: str = "https://threadreaderapp.com/thread",
                     max_thread_hops: int = 10, thread_hop_interval: float = 0.3,
                     max_linked_pages: int = 5, linked_page_interval: float = 0.5) -> ScraperDispatcher:
    """Build the standard strategy list over one shared fetcher."""
    document = DocumentScraper(fetcher)
    web = WebScraper(fetcher, max_body_chars=max_body_chars)
    mirror = MirrorClient(fetcher, base_url=mirror_api_url)
    reconstructor = ThreadReconstructor(fetcher, mirror=mirror, unroll_base_url=unroll_base_url,
                                        max_hops=max_thread_hops, hop_interval=thread_hop_interval)
    link_scraper = LinkedContentScraper(document, web, max_links=max_linked_pages, delay=linked_page_interval)
    social = SocialPostScraper(fetcher, reconstructor=reconstructor, mirror=mirror, link_scraper=link_scraper)
    return ScraperDispatcher([document, social, web])
