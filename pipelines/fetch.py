"""HTTP fetching for scraper strategies.

Every request carries a total timeout and a browser User-Agent. Failures are
raised as :class:`ScrapeError` with kind ``network``; timeouts and transient
upstream statuses are marked retryable.
"""

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

from services.shared.errors import ScrapeError, ScrapeErrorKind, SSRFError
from .security import check_url_ssrf

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
PDF_ACCEPT = "application/pdf"
JSON_ACCEPT = "application/json"

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass
class FetchResponse:
    """Body and headers of a completed fetch."""
    url: str
    status: int
    content_type: str = ""
    body: bytes = b""
    final_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    encoding: str = "utf-8"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        try:
            return self.body.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            logger.debug(f"Unknown charset {self.encoding!r} from {self.url}, decoding as utf-8")
            return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.text())
        except ValueError as e:
            raise ScrapeError(ScrapeErrorKind.PARSE, f"Invalid JSON from {self.url}: {e}", url=self.url)


class HttpFetcher:
    """Asynchronous fetcher shared by all scraper strategies.

    One instance owns one ``aiohttp`` session; use it as an async context
    manager or call :meth:`close` when done.
    """

    def __init__(self,
                 default_timeout: float = 15.0,
                 user_agent: str = BROWSER_USER_AGENT,
                 max_retries: int = 1,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 10.0,
                 max_body_bytes: int = 50 * 1024 * 1024,
                 ssrf_guard: bool = True):
        """Initialize fetcher.

        Args:
            default_timeout: Total timeout in seconds when the caller gives none
            user_agent: User-Agent header sent with every request
            max_retries: Extra attempts for retryable failures
            retry_delay: Base backoff delay in seconds
            max_retry_delay: Upper bound for a single backoff delay
            max_body_bytes: Responses larger than this are rejected
            ssrf_guard: Check every target against private/internal addresses
        """
        self.default_timeout = default_timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.max_body_bytes = max_body_bytes
        self.ssrf_guard = ssrf_guard
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
        return self.session

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    async def _check_target(self, url: str):
        if not self.ssrf_guard:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, check_url_ssrf, url)

    async def fetch(self, url: str, accept: str = HTML_ACCEPT, timeout: Optional[float] = None,
                    headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """Fetch a URL and return its body.

        Raises:
            ScrapeError: On timeout, connection failure, oversized body or a
                non-2xx final status
        """
        await self._check_target(url)
        session = await self._ensure_session()

        request_headers = {"Accept": accept, "Accept-Language": "en-US,en;q=0.5"}
        if headers:
            request_headers.update(headers)
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.default_timeout)

        last_error: Optional[ScrapeError] = None
        for attempt in range(self.max_retries + 1):
            start_time = time.time()
            try:
                async with session.get(url, headers=request_headers, timeout=client_timeout,
                                       allow_redirects=True) as response:
                    if response.status in RETRYABLE_STATUS_CODES:
                        last_error = ScrapeError(
                            ScrapeErrorKind.NETWORK, f"HTTP {response.status} from {url}",
                            url=url, retryable=True,
                        )
                    elif not 200 <= response.status < 300:
                        raise ScrapeError(ScrapeErrorKind.NETWORK, f"HTTP {response.status} from {url}", url=url)
                    else:
                        declared = response.content_length
                        if declared is not None and declared > self.max_body_bytes:
                            raise ScrapeError(ScrapeErrorKind.UNSUPPORTED_FORMAT,
                                              f"Response too large ({declared} bytes) from {url}", url=url)
                        body = await response.read()
                        if len(body) > self.max_body_bytes:
                            raise ScrapeError(ScrapeErrorKind.UNSUPPORTED_FORMAT,
                                              f"Response too large ({len(body)} bytes) from {url}", url=url)
                        logger.debug(f"Fetched {url} ({len(body)} bytes) in {time.time() - start_time:.2f}s")
                        return FetchResponse(
                            url=url,
                            status=response.status,
                            content_type=response.headers.get("Content-Type", ""),
                            body=body,
                            final_url=str(response.url),
                            headers=dict(response.headers),
                            encoding=response.charset or "utf-8",
                        )
            except SSRFError:
                raise
            except ScrapeError:
                raise
            except asyncio.TimeoutError:
                last_error = ScrapeError(ScrapeErrorKind.NETWORK, f"Timeout fetching {url}", url=url, retryable=True)
            except (aiohttp.ClientConnectionError, aiohttp.ServerDisconnectedError) as e:
                last_error = ScrapeError(ScrapeErrorKind.NETWORK, f"Connection error fetching {url}: {e}",
                                         url=url, retryable=True)
            except aiohttp.ClientError as e:
                raise ScrapeError(ScrapeErrorKind.NETWORK, f"Client error fetching {url}: {e}", url=url)

            if attempt < self.max_retries:
                delay = self._calculate_retry_delay(attempt)
                logger.warning(f"{last_error}; retrying in {delay:.2f}s (attempt {attempt + 1}/{self.max_retries + 1})")
                await asyncio.sleep(delay)

        logger.warning(f"Giving up on {url} after {self.max_retries + 1} attempts: {last_error}")
        raise last_error
