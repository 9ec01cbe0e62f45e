"""Social thread reconstruction.

Two strategies run in order: the public unroll service, then a walk up the
reply chain through the mirror API. Whatever they recover is returned as a
:class:`ThreadBundle` whose provenance records which strategy succeeded.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from observability.metrics import record_thread
from services.shared.errors import ScrapeError
from .fetch import HTML_ACCEPT, JSON_ACCEPT, HttpFetcher
from .links import extract_links, merge_links
from .pacing import Pacer

logger = logging.getLogger(__name__)

THREAD_SEPARATOR = "\n\n---\n\n"
MIN_SEGMENT_LENGTH = 6


class ThreadProvenance(str, Enum):
    """Which strategy produced a thread bundle."""
    UNROLL_SERVICE = "unroll-service"
    REPLY_CHAIN = "reply-chain"
    NONE = "none"


@dataclass
class ThreadBundle:
    """Ordered posts of a thread by a single author."""
    texts: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    provenance: ThreadProvenance = ThreadProvenance.NONE

    @property
    def post_count(self) -> int:
        return len(self.texts)

    @property
    def full_text(self) -> str:
        return THREAD_SEPARATOR.join(self.texts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "postCount": self.post_count,
            "texts": list(self.texts),
            "links": list(self.links),
            "fullText": self.full_text,
            "provenance": self.provenance.value,
        }


def clean_handle(handle: Optional[str]) -> str:
    return (handle or "").strip().lstrip("@")


class MirrorClient:
    """Client for the public post mirror API (FxTwitter-compatible)."""

    def __init__(self, fetcher: HttpFetcher, base_url: str = "https://api.fxtwitter.com",
                 timeout: float = 10.0):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_post(self, handle: str, post_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one post; returns None when the mirror has nothing usable."""
        url = f"{self.base_url}/{clean_handle(handle) or 'i'}/status/{post_id}"
        try:
            response = await self.fetcher.fetch(url, accept=JSON_ACCEPT, timeout=self.timeout)
            data = response.json()
        except ScrapeError as e:
            logger.debug(f"Mirror lookup failed for {post_id}: {e}")
            return None
        if not isinstance(data, dict) or data.get("code") != 200 or not isinstance(data.get("tweet"), dict):
            return None
        return data["tweet"]


class ThreadReconstructor:
    """Recovers the full thread a post belongs to."""

    def __init__(self, fetcher: HttpFetcher, mirror: Optional[MirrorClient] = None,
                 unroll_base_url: str = "https://threadreaderapp.com/thread",
                 max_hops: int = 10, hop_interval: float = 0.3, timeout: float = 15.0,
                 pacer: Optional[Pacer] = None):
        self.fetcher = fetcher
        self.mirror = mirror or MirrorClient(fetcher)
        self.unroll_base_url = unroll_base_url.rstrip("/")
        self.max_hops = max_hops
        self.timeout = timeout
        self.pacer = pacer or Pacer(hop_interval, name="reply-chain")

    async def fetch_unrolled(self, post_id: str) -> Optional[ThreadBundle]:
        """Read an already-unrolled thread from the unroll service."""
        url = f"{self.unroll_base_url}/{post_id}.html"
        try:
            response = await self.fetcher.fetch(url, accept=HTML_ACCEPT, timeout=self.timeout)
        except ScrapeError as e:
            logger.debug(f"Unroll lookup failed for {post_id}: {e}")
            return None

        soup = BeautifulSoup(response.text(), "html.parser")
        segments = soup.select(".content-tweet")
        if not segments:
            return None

        texts = []
        link_groups = []
        for segment in segments:
            text = segment.get_text(" ", strip=True)
            if len(text) >= MIN_SEGMENT_LENGTH:
                texts.append(text)
                link_groups.append(extract_links(text))
        for anchor in soup.select(".content-tweet a[href]"):
            href = anchor["href"]
            if href.startswith("http"):
                link_groups.append(extract_links(href))

        return ThreadBundle(texts=texts, links=merge_links(*link_groups),
                            provenance=ThreadProvenance.UNROLL_SERVICE)

    async def walk_reply_chain(self, post_id: str, author_handle: str) -> List[Dict[str, Any]]:
        """Walk from ``post_id`` up through the author's own replies.

        At most ``max_hops`` parents are followed, so the result holds up to
        ``max_hops + 1`` posts, oldest first.
        """
        author = clean_handle(author_handle).lower()
        thread: List[Dict[str, Any]] = []
        current_id = post_id
        current_handle = clean_handle(author_handle)
        hops = 0
        self.pacer.reset()

        while True:
            await self.pacer.wait()
            post = await self.mirror.get_post(current_handle, current_id)
            if not post:
                break

            post_author = clean_handle((post.get("author") or {}).get("screen_name")).lower()
            if post_author == author:
                thread.insert(0, post)

            parent_id = post.get("replying_to_status")
            parent_handle = clean_handle(post.get("replying_to"))
            if not parent_id or parent_handle.lower() != author or hops >= self.max_hops:
                break
            current_id = str(parent_id)
            current_handle = parent_handle
            hops += 1

        return thread

    async def reconstruct(self, post_id: str, author_handle: str) -> ThreadBundle:
        unrolled = await self.fetch_unrolled(post_id)
        if unrolled and unrolled.post_count > 1:
            return self._finish(post_id, unrolled)

        chain = await self.walk_reply_chain(post_id, author_handle)
        chain_texts = [post.get("text") or "" for post in chain]
        if len(chain) > 1:
            bundle = ThreadBundle(
                texts=chain_texts,
                links=merge_links(*(extract_links(text) for text in chain_texts)),
                provenance=ThreadProvenance.REPLY_CHAIN,
            )
            return self._finish(post_id, bundle)

        if unrolled and unrolled.post_count == 1:
            fallback = ThreadBundle(texts=unrolled.texts, links=unrolled.links)
        elif chain:
            fallback = ThreadBundle(texts=chain_texts, links=extract_links(chain_texts[0]))
        else:
            fallback = ThreadBundle()
        return self._finish(post_id, fallback)

    def _finish(self, post_id: str, bundle: ThreadBundle) -> ThreadBundle:
        record_thread(bundle.provenance.value)
        logger.info(f"Thread for post {post_id}: {bundle.post_count} posts via {bundle.provenance.value}")
        return bundle
