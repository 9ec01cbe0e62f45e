"""Social post scraper for twitter.com / x.com status URLs."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.shared.errors import ScrapeError, ScrapeErrorKind
from ..links import LinkedContentScraper, extract_links, merge_links
from ..threads import MirrorClient, ThreadBundle, ThreadReconstructor
from .base import ScrapedContent, ScrapeOptions, Scraper

logger = logging.getLogger(__name__)

STATUS_URL_PATTERN = re.compile(
    r'^https?://(?:www\.|mobile\.)?(?:twitter|x)\.com/(?P<handle>\w+)/status(?:es)?/(?P<post_id>\d+)',
    re.IGNORECASE,
)
TITLE_LENGTH = 100


def parse_status_url(url: str) -> Optional[Dict[str, str]]:
    match = STATUS_URL_PATTERN.match(url)
    if not match:
        return None
    return {'handle': match.group('handle'), 'post_id': match.group('post_id')}


def _title_from_text(text: str) -> str:
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + '...'
    return text


def _published_at(post: Dict[str, Any]) -> Optional[str]:
    timestamp = post.get('created_timestamp')
    if isinstance(timestamp, (int, float)):
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
    return post.get('created_at')


def _best_video_url(video: Dict[str, Any]) -> Optional[str]:
    variants = [v for v in video.get('variants') or []
                if v.get('url') and v.get('content_type', 'video/mp4') == 'video/mp4']
    if variants:
        return max(variants, key=lambda v: v.get('bitrate') or 0)['url']
    return video.get('url')


class SocialPostScraper(Scraper):
    """Scrapes a post through the mirror API and reconstructs its thread.

    Links found in the post or thread are scraped once (no recursion) and
    stored inline under ``platform_data['linkedContent']``.
    """

    name = "social"

    def __init__(self, fetcher, reconstructor: Optional[ThreadReconstructor] = None,
                 mirror: Optional[MirrorClient] = None,
                 link_scraper: Optional[LinkedContentScraper] = None):
        super().__init__(fetcher)
        self.mirror = mirror or MirrorClient(fetcher)
        self.reconstructor = reconstructor or ThreadReconstructor(fetcher, mirror=self.mirror)
        self.link_scraper = link_scraper

    def can_handle(self, url: str) -> bool:
        return parse_status_url(url) is not None

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedContent:
        options = options or ScrapeOptions()
        parsed = parse_status_url(url)
        if parsed is None:
            raise ScrapeError(ScrapeErrorKind.UNSUPPORTED_FORMAT, "Not a post URL", url=url)

        handle, post_id = parsed['handle'], parsed['post_id']
        post = await self.mirror.get_post(handle, post_id)
        author = (post or {}).get('author') or {}
        author_handle = author.get('screen_name') or handle

        thread = await self.reconstructor.reconstruct(post_id, author_handle)
        if post is None and thread.post_count == 0:
            raise ScrapeError(ScrapeErrorKind.NETWORK, f"Could not load post {post_id}", url=url, retryable=True)

        if post is not None:
            content = self._from_post(post, options)
        else:
            logger.info(f"Mirror API had no data for {post_id}; building record from thread")
            content = ScrapedContent(
                title=_title_from_text(thread.texts[0]),
                description=thread.texts[0],
                body_text=thread.texts[0],
                author_handle=f"@{author_handle}",
                platform_data={'postId': post_id},
            )

        if thread.post_count > 1:
            content.body_text = thread.full_text
            content.platform_data['thread'] = thread.to_dict()

        links = merge_links(thread.links, extract_links(content.description))
        if links:
            content.platform_data['links'] = links
            if self.link_scraper is not None:
                content.platform_data['linkedContent'] = await self.link_scraper.scrape_links(links, options)

        return content

    def _from_post(self, post: Dict[str, Any], options: ScrapeOptions) -> ScrapedContent:
        text = post.get('text') or ''
        author = post.get('author') or {}
        media = post.get('media') or {}

        images: List[Dict[str, Any]] = []
        for photo in media.get('photos') or []:
            if len(images) >= options.max_images:
                break
            if photo.get('url'):
                image = {'url': photo['url']}
                if photo.get('width'):
                    image['width'] = photo['width']
                if photo.get('height'):
                    image['height'] = photo['height']
                images.append(image)

        videos: List[Dict[str, Any]] = []
        for video in media.get('videos') or []:
            video_url = _best_video_url(video)
            if not video_url:
                continue
            entry: Dict[str, Any] = {'url': video_url}
            if video.get('thumbnail_url'):
                entry['thumbnail'] = video['thumbnail_url']
            if video.get('duration'):
                entry['duration'] = video['duration']
            videos.append(entry)

        screen_name = author.get('screen_name')
        return ScrapedContent(
            title=_title_from_text(text),
            description=text,
            body_text=text,
            author_name=author.get('name'),
            author_handle=f"@{screen_name}" if screen_name else None,
            published_at=_published_at(post),
            images=images,
            videos=videos,
            platform_data={
                'postId': post.get('id'),
                'likeCount': post.get('likes'),
                'repostCount': post.get('retweets'),
                'replyCount': post.get('replies'),
                'profileImageUrl': author.get('avatar_url'),
            },
        )
