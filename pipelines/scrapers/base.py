"""Shared contract for scraper strategies."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..fetch import HttpFetcher
from ..sanitize import strip_unsafe


@dataclass
class ScrapeOptions:
    """Per-scrape limits."""
    timeout: float = 15.0
    max_images: int = 10


@dataclass
class ScrapedContent:
    """Extracted fields of a single source, before persistence."""
    title: Optional[str] = None
    description: Optional[str] = None
    body_text: Optional[str] = None
    author_name: Optional[str] = None
    author_handle: Optional[str] = None
    published_at: Optional[str] = None
    images: List[Dict[str, Any]] = field(default_factory=list)
    videos: List[Dict[str, Any]] = field(default_factory=list)
    platform_data: Dict[str, Any] = field(default_factory=dict)

    def to_record_fields(self) -> Dict[str, Any]:
        """Whole-field update applied to a content record on success.

        Text fields lose any unsafe code points a strategy let through.
        """
        return {
            'title': strip_unsafe(self.title),
            'description': strip_unsafe(self.description),
            'body_text': strip_unsafe(self.body_text),
            'author_name': strip_unsafe(self.author_name),
            'author_handle': strip_unsafe(self.author_handle),
            'published_at': self.published_at,
            'images': list(self.images),
            'videos': list(self.videos),
            'platform_data': dict(self.platform_data),
        }


class Scraper(ABC):
    """A content acquisition strategy.

    Subclasses share one :class:`HttpFetcher` so connection pooling and
    timeouts are uniform across strategies.
    """

    name: str = "base"

    def __init__(self, fetcher: HttpFetcher):
        self.fetcher = fetcher

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        """Return True if this strategy claims ``url``."""

    @abstractmethod
    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedContent:
        """Fetch ``url`` and extract its content.

        Raises:
            ScrapeError: On network, parse or unsupported-format failures
        """
