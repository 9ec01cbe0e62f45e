"""Scraper strategies for captured URLs."""

from .base import ScrapedContent, ScrapeOptions, Scraper
from .document import DocumentScraper
from .social import SocialPostScraper
from .web import WebScraper

__all__ = [
    'ScrapedContent',
    'ScrapeOptions',
    'Scraper',
    'DocumentScraper',
    'SocialPostScraper',
    'WebScraper',
]
