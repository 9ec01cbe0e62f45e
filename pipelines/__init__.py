"""Pipelines package for LinkVault.

Provides URL normalization, fetching, scraping, thread reconstruction and
scraper dispatch for captured links.
"""

from .urls import SourceType, classify, normalize, is_document_url
from .sanitize import sanitize_text
from .fetch import FetchResponse, HttpFetcher
from .pacing import Pacer, TokenBucket
from .links import LinkedContentScraper, extract_links
from .threads import ThreadBundle, ThreadProvenance, ThreadReconstructor, MirrorClient
from .dispatcher import ScraperDispatcher, build_dispatcher

__all__ = [
    # URLs
    'SourceType',
    'classify',
    'normalize',
    'is_document_url',

    # Text
    'sanitize_text',

    # Fetching
    'FetchResponse',
    'HttpFetcher',
    'Pacer',
    'TokenBucket',

    # Links and threads
    'LinkedContentScraper',
    'extract_links',
    'ThreadBundle',
    'ThreadProvenance',
    'ThreadReconstructor',
    'MirrorClient',

    # Dispatch
    'ScraperDispatcher',
    'build_dispatcher',
]
