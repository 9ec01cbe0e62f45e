"""PDF and arXiv paper extraction."""

import io
import logging
import re
from typing import Any, Dict, Optional, Tuple
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup
from pypdf import PdfReader

from services.shared.errors import ScrapeError, ScrapeErrorKind
from ..fetch import HTML_ACCEPT, PDF_ACCEPT
from ..sanitize import sanitize_text
from ..urls import ARXIV_ABSTRACT_PATTERN, is_document_url
from .base import ScrapedContent, ScrapeOptions, Scraper

logger = logging.getLogger(__name__)

DESCRIPTION_LENGTH = 500


class DocumentScraper(Scraper):
    """Extracts full text and metadata from PDF documents.

    arXiv abstract pages are handled by reading the citation metadata from
    the abstract page and then downloading the paper PDF. When only the PDF
    fails, the abstract is kept so the capture still completes.
    """

    name = "document"

    def can_handle(self, url: str) -> bool:
        return is_document_url(url)

    @staticmethod
    def is_arxiv_abstract(url: str) -> bool:
        return bool(ARXIV_ABSTRACT_PATTERN.search(url))

    @staticmethod
    def arxiv_pdf_url(url: str) -> str:
        return url.replace('/abs/', '/pdf/', 1) + '.pdf'

    @staticmethod
    def title_from_url(url: str) -> str:
        """Derive a readable title from the last path segment."""
        path = urlsplit(url).path
        filename = unquote(path.rstrip('/').split('/')[-1]) if path else ''
        title = re.sub(r'\.pdf$', '', filename, flags=re.IGNORECASE)
        title = re.sub(r'[-_]', ' ', title)
        title = re.sub(r'\s+', ' ', title).strip()
        return title or 'PDF Document'

    @staticmethod
    def _describe(text: str) -> str:
        if len(text) > DESCRIPTION_LENGTH:
            return text[:DESCRIPTION_LENGTH] + '...'
        return text

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedContent:
        options = options or ScrapeOptions()
        if self.is_arxiv_abstract(url):
            return await self._scrape_arxiv(url, options)

        logger.info(f"Fetching PDF {url}")
        text, page_count, info = await self._fetch_pdf(url, options)
        body_text = sanitize_text(text)
        logger.info(f"Extracted {page_count} pages, {len(body_text)} chars from {url}")

        return ScrapedContent(
            title=info.get('title') or self.title_from_url(url),
            description=self._describe(body_text),
            body_text=body_text,
            author_name=info.get('author'),
            platform_data={
                'contentFormat': 'pdf',
                'pageCount': page_count,
                'pdfInfo': info,
            },
        )

    async def _fetch_pdf(self, url: str, options: ScrapeOptions) -> Tuple[str, int, Dict[str, Any]]:
        response = await self.fetcher.fetch(url, accept=PDF_ACCEPT, timeout=options.timeout)
        content_type = (response.content_type or '').lower()
        if 'pdf' not in content_type and not urlsplit(url).path.lower().endswith('.pdf'):
            raise ScrapeError(ScrapeErrorKind.UNSUPPORTED_FORMAT,
                              f"Not a PDF: content-type is {content_type or 'unknown'}", url=url)
        logger.debug(f"Parsing {len(response.body)} bytes of PDF from {url}")
        return self.parse_pdf(response.body, url)

    @staticmethod
    def parse_pdf(data: bytes, url: Optional[str] = None) -> Tuple[str, int, Dict[str, Any]]:
        """Parse a PDF payload with pypdf.

        Returns:
            Tuple of (full text, page count, document info dict)

        Raises:
            ScrapeError: With kind ``parse`` when the payload cannot be read
        """
        try:
            reader = PdfReader(io.BytesIO(data))
            parts = [page.extract_text() or '' for page in reader.pages]
            metadata = reader.metadata
        except Exception as e:
            raise ScrapeError(ScrapeErrorKind.PARSE, f"Failed to parse PDF: {e}", url=url) from e

        info: Dict[str, Any] = {}
        if metadata is not None:
            fields = {
                'title': '/Title',
                'author': '/Author',
                'subject': '/Subject',
                'keywords': '/Keywords',
                'creator': '/Creator',
                'producer': '/Producer',
                'creationDate': '/CreationDate',
                'modificationDate': '/ModDate',
            }
            for key, pdf_key in fields.items():
                value = metadata.get(pdf_key)
                if value:
                    info[key] = sanitize_text(str(value)) or None
        return '\n'.join(parts), len(parts), info

    async def _fetch_arxiv_metadata(self, url: str, options: ScrapeOptions) -> Dict[str, Optional[str]]:
        """Read citation metadata from an arXiv abstract page."""
        response = await self.fetcher.fetch(url, accept=HTML_ACCEPT, timeout=options.timeout)
        soup = BeautifulSoup(response.text(), 'html.parser')

        def meta(name: str) -> Optional[str]:
            tag = soup.find('meta', attrs={'name': name})
            return tag.get('content') if tag else None

        title = meta('citation_title')
        if not title:
            heading = soup.select_one('h1.title')
            if heading:
                title = heading.get_text(' ', strip=True).replace('Title:', '', 1).strip()

        authors = [tag.get('content') for tag in soup.find_all('meta', attrs={'name': 'citation_author'})
                   if tag.get('content')]

        abstract = meta('citation_abstract')
        if not abstract:
            block = soup.select_one('blockquote.abstract')
            if block:
                abstract = block.get_text(' ', strip=True).replace('Abstract:', '', 1).strip()

        return {
            'title': sanitize_text(title) or None,
            'author': sanitize_text(', '.join(authors)) or None,
            'abstract': sanitize_text(abstract) or None,
        }

    async def _scrape_arxiv(self, url: str, options: ScrapeOptions) -> ScrapedContent:
        logger.info(f"Processing arXiv page {url}")
        metadata: Dict[str, Optional[str]] = {}
        try:
            metadata = await self._fetch_arxiv_metadata(url, options)
            logger.info(f"Got arXiv metadata for {url}: {(metadata.get('title') or '')[:50]!r}")
        except ScrapeError as e:
            logger.warning(f"Failed to fetch arXiv abstract page {url}: {e}")

        title = metadata.get('title')
        author = metadata.get('author')
        abstract = metadata.get('abstract')

        pdf_url = self.arxiv_pdf_url(url)
        logger.info(f"Downloading arXiv PDF {pdf_url}")
        try:
            text, page_count, info = await self._fetch_pdf(pdf_url, options)
        except ScrapeError as e:
            if not abstract:
                raise
            logger.warning(f"arXiv PDF failed for {url}, keeping abstract only: {e}")
            return ScrapedContent(
                title=title or self.title_from_url(url),
                description=abstract,
                body_text=f"ABSTRACT:\n{abstract}",
                author_name=author,
                platform_data={
                    'contentFormat': 'pdf',
                    'arxivUrl': url,
                    'pdfUrl': pdf_url,
                    'abstractOnly': True,
                    'documentError': str(e),
                },
            )

        full_text = sanitize_text(text)
        if abstract:
            body_text = f"ABSTRACT:\n{abstract}\n\nFULL PAPER:\n{full_text}"
        else:
            body_text = full_text
        logger.info(f"Extracted arXiv paper {url}: {page_count} pages, {len(body_text)} chars")

        return ScrapedContent(
            title=title or info.get('title') or self.title_from_url(url),
            description=abstract or self._describe(body_text),
            body_text=body_text,
            author_name=author or info.get('author'),
            platform_data={
                'contentFormat': 'pdf',
                'arxivUrl': url,
                'pdfUrl': pdf_url,
                'pageCount': page_count,
                'pdfInfo': info,
            },
        )
