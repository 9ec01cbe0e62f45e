"""Generic web page scraper.

Reads Open Graph, Twitter Card and standard meta tags, strips page chrome
and takes the main content region as body text.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from trafilatura import extract

from services.shared.errors import ScrapeError, ScrapeErrorKind
from ..fetch import HTML_ACCEPT
from .base import ScrapedContent, ScrapeOptions, Scraper

logger = logging.getLogger(__name__)

CHROME_SELECTORS = "script, style, noscript, nav, footer, header, aside, .sidebar, .comments, #comments"
MAIN_CONTENT_SELECTORS = ["article", "main", "[role=main]", "body"]
REJECTED_IMAGE_MARKERS = ("data:", "tracking", "pixel", "1x1")
REJECTED_IMAGE_EXTENSIONS = re.compile(r"\.(svg|gif)$", re.IGNORECASE)
MIN_IMAGE_DIMENSION = 50


def _parse_dimension(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = re.match(r"\s*(\d+)", str(value))
    if not match:
        return None
    return int(match.group(1)) or None


def is_valid_image_url(url: str) -> bool:
    """Reject inline data, tracking pixels, SVG and GIF images."""
    lowered = url.lower()
    if any(marker in lowered for marker in REJECTED_IMAGE_MARKERS):
        return False
    return not REJECTED_IMAGE_EXTENSIONS.search(lowered.split("?", 1)[0])


class WebScraper(Scraper):
    """Fallback strategy; claims every URL."""

    name = "web"

    def __init__(self, fetcher, max_body_chars: int = 5000):
        super().__init__(fetcher)
        self.max_body_chars = max_body_chars

    def can_handle(self, url: str) -> bool:
        return True

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedContent:
        options = options or ScrapeOptions()
        response = await self.fetcher.fetch(url, accept=HTML_ACCEPT, timeout=options.timeout)

        content_type = (response.content_type or "").lower()
        if content_type and "html" not in content_type and "xml" not in content_type:
            raise ScrapeError(ScrapeErrorKind.UNSUPPORTED_FORMAT,
                              f"Unsupported content type {content_type}", url=url)

        try:
            html = response.text()
            return self.parse_html(html, response.final_url or url, options)
        except ScrapeError:
            raise
        except Exception as e:
            raise ScrapeError(ScrapeErrorKind.PARSE, f"Failed to parse HTML: {e}", url=url) from e

    def parse_html(self, html: str, page_url: str, options: ScrapeOptions) -> ScrapedContent:
        """Extract content from an HTML document fetched from ``page_url``."""
        soup = BeautifulSoup(html, "html.parser")

        def meta_property(prop: str) -> Optional[str]:
            tag = soup.find("meta", attrs={"property": prop})
            return (tag.get("content") or None) if tag else None

        def meta_name(name: str) -> Optional[str]:
            tag = soup.find("meta", attrs={"name": name})
            return (tag.get("content") or None) if tag else None

        base_tag = soup.find("base", href=True)
        base_url = urljoin(page_url, base_tag["href"]) if base_tag else page_url

        og_title = meta_property("og:title")
        og_description = meta_property("og:description")
        og_image = meta_property("og:image")
        og_video = meta_property("og:video")
        twitter_image = meta_name("twitter:image")
        twitter_creator = meta_name("twitter:creator")

        title_tag = soup.find("title")
        page_title = title_tag.get_text(strip=True) if title_tag else None
        title = og_title or meta_name("twitter:title") or page_title or None
        description = og_description or meta_name("twitter:description") or meta_name("description")

        author_name = meta_name("author") or meta_property("article:author")
        if not author_name and twitter_creator:
            author_name = twitter_creator.lstrip("@")

        published_at = meta_property("article:published_time")
        if not published_at:
            time_tag = soup.find("time", attrs={"datetime": True})
            published_at = time_tag["datetime"] if time_tag else None

        canonical = soup.find("link", rel="canonical")
        platform_data: Dict[str, Any] = {
            "ogType": meta_property("og:type"),
            "canonicalUrl": canonical.get("href") if canonical else None,
        }

        images = self._collect_images(soup, base_url, og_image, twitter_image, options.max_images)

        videos: List[Dict[str, Any]] = []
        if og_video:
            video: Dict[str, Any] = {"url": urljoin(base_url, og_video)}
            if og_image:
                video["thumbnail"] = urljoin(base_url, og_image)
            videos.append(video)

        for element in soup.select(CHROME_SELECTORS):
            element.decompose()
        body_text = self._main_text(soup)
        if not body_text:
            fallback = extract(html)
            if fallback:
                body_text = re.sub(r"\s+", " ", fallback).strip()

        return ScrapedContent(
            title=title,
            description=description,
            body_text=body_text[:self.max_body_chars] or None,
            author_name=author_name,
            author_handle=twitter_creator,
            published_at=published_at,
            images=images,
            videos=videos,
            platform_data=platform_data,
        )

    @staticmethod
    def _main_text(soup: BeautifulSoup) -> str:
        for selector in MAIN_CONTENT_SELECTORS:
            elements = soup.select(selector)
            text = " ".join(el.get_text(" ") for el in elements)
            text = re.sub(r"\s+", " ", text).strip()
            if text:
                return text
        return ""

    @staticmethod
    def _collect_images(soup: BeautifulSoup, base_url: str, og_image: Optional[str],
                        twitter_image: Optional[str], max_images: int) -> List[Dict[str, Any]]:
        images: List[Dict[str, Any]] = []
        seen = set()

        for candidate in (og_image, twitter_image):
            if candidate and len(images) < max_images:
                resolved = urljoin(base_url, candidate)
                if resolved not in seen:
                    images.append({"url": resolved})
                    seen.add(resolved)

        for img in soup.find_all("img"):
            if len(images) >= max_images:
                break
            src = img.get("src") or img.get("data-src")
            if not src or not is_valid_image_url(src):
                continue
            width = _parse_dimension(img.get("width"))
            height = _parse_dimension(img.get("height"))
            if (width is not None and width < MIN_IMAGE_DIMENSION) or \
                    (height is not None and height < MIN_IMAGE_DIMENSION):
                continue
            resolved = urljoin(base_url, src)
            if resolved in seen:
                continue
            seen.add(resolved)
            image: Dict[str, Any] = {"url": resolved}
            if img.get("alt"):
                image["alt"] = img["alt"]
            if width:
                image["width"] = width
            if height:
                image["height"] = height
            images.append(image)

        return images
