"""Tests for the shared HTTP fetcher."""

import pytest

from pipelines.fetch import FetchResponse, HttpFetcher
from services.shared.errors import ScrapeError, ScrapeErrorKind, SSRFError


class TestFetchResponse:
    """Test suite for FetchResponse helpers."""

    def test_text_uses_declared_encoding(self):
        """Test decoding with the response charset."""
        response = FetchResponse(url="https://example.com", status=200, body="café".encode("latin-1"),
                                 encoding="latin-1")
        assert response.text() == "café"

    def test_unknown_charset_falls_back_to_utf8(self):
        """Test that a charset Python does not know decodes as UTF-8 instead of raising."""
        response = FetchResponse(url="https://example.com", status=200, body="naïve".encode("utf-8"),
                                 encoding="bogus")
        assert response.text() == "naïve"

    def test_json_parse_error_is_parse_scrape_error(self):
        """Test that malformed JSON is reported as a parse failure."""
        response = FetchResponse(url="https://api.example.com", status=200, body=b"{not json")
        with pytest.raises(ScrapeError) as exc_info:
            response.json()
        assert exc_info.value.kind == ScrapeErrorKind.PARSE

    @pytest.mark.parametrize("status,ok", [(200, True), (204, True), (301, False), (404, False)])
    def test_ok(self, status, ok):
        """Test the success status range."""
        assert FetchResponse(url="https://example.com", status=status).ok is ok


class TestHttpFetcher:
    """Test suite for HttpFetcher."""

    @pytest.mark.asyncio
    async def test_private_target_rejected_before_request(self):
        """Test that the SSRF guard runs before any session is opened."""
        fetcher = HttpFetcher()
        with pytest.raises(SSRFError):
            await fetcher.fetch("http://127.0.0.1:8080/admin")
        assert fetcher.session is None

    def test_retry_delay_is_bounded(self):
        """Test exponential backoff never exceeds the configured maximum."""
        fetcher = HttpFetcher(retry_delay=1.0, max_retry_delay=5.0)
        delays = [fetcher._calculate_retry_delay(attempt) for attempt in range(6)]
        assert all(0 < delay <= 5.0 for delay in delays)
        assert delays[0] >= 1.0

    @pytest.mark.asyncio
    async def test_close_without_session(self):
        """Test that closing an unused fetcher is harmless."""
        fetcher = HttpFetcher()
        await fetcher.close()
        assert fetcher.session is None
