"""Tests for URL normalization and source classification."""

import pytest

from pipelines.urls import SourceType, classify, is_document_url, normalize
from services.shared.errors import InvalidUrlError, ValidationError


class TestNormalize:
    """Test suite for normalize()."""

    def test_lowercases_scheme_and_host(self):
        """Test that scheme and host are lower-cased but the path is kept."""
        assert normalize("HTTPS://Example.COM/Some/Path") == "https://example.com/Some/Path"

    def test_strips_tracking_params_and_fragment(self):
        """Test that utm_* and click ids are removed along with the fragment."""
        url = "https://example.com/post?utm_source=twitter&id=42&fbclid=abc&utm_medium=social#comments"
        assert normalize(url) == "https://example.com/post?id=42"

    def test_drops_default_port(self):
        """Test that default ports disappear and other ports stay."""
        assert normalize("http://example.com:80/a") == "http://example.com/a"
        assert normalize("https://example.com:443/a") == "https://example.com/a"
        assert normalize("https://example.com:8443/a") == "https://example.com:8443/a"

    def test_empty_path_becomes_slash(self):
        """Test that a bare host gets a root path."""
        assert normalize("https://example.com") == "https://example.com/"

    def test_tracking_variants_collapse_to_one_url(self):
        """Test that two submissions differing only in tracking params normalize equally."""
        first = normalize("https://example.com/article?utm_source=newsletter")
        second = normalize("https://example.com/article")
        assert first == second

    @pytest.mark.parametrize("url", [
        "https://Example.com/a?b=1&utm_campaign=x#top",
        "http://example.com:80",
        "https://example.com/search?q=hello+world&page=2",
        "https://user:pw@example.com/private",
    ])
    def test_idempotent(self, url):
        """Test that normalizing twice changes nothing."""
        once = normalize(url)
        assert normalize(once) == once

    @pytest.mark.parametrize("url", [
        "",
        "   ",
        "not a url",
        "/relative/path",
        "ftp://example.com/file",
        "javascript:alert(1)",
        "http://",
        "http://example.com:99999/",
    ])
    def test_rejects_invalid_urls(self, url):
        """Test that malformed and non-HTTP URLs raise a validation error."""
        with pytest.raises(InvalidUrlError):
            normalize(url)

    def test_invalid_url_is_validation_error(self):
        """Test that InvalidUrlError belongs to the validation family."""
        with pytest.raises(ValidationError):
            normalize("mailto:someone@example.com")


class TestClassify:
    """Test suite for classify()."""

    @pytest.mark.parametrize("url,expected", [
        ("https://twitter.com/alice/status/123", SourceType.TWITTER),
        ("https://x.com/alice/status/123", SourceType.TWITTER),
        ("https://mobile.twitter.com/alice", SourceType.TWITTER),
        ("https://www.instagram.com/p/abc/", SourceType.INSTAGRAM),
        ("https://www.linkedin.com/posts/someone", SourceType.LINKEDIN),
        ("https://pin.it/xyz", SourceType.PINTEREST),
        ("https://www.pinterest.com/pin/1/", SourceType.PINTEREST),
        ("https://arxiv.org/abs/2401.00001", SourceType.PDF),
        ("https://example.com/papers/report.pdf", SourceType.PDF),
        ("https://example.com/blog/post", SourceType.WEB),
    ])
    def test_source_types(self, url, expected):
        """Test classification of representative URLs."""
        assert classify(url) == expected

    def test_lookalike_domain_is_web(self):
        """Test that a host merely ending in a platform name is not that platform."""
        assert classify("https://notx.com/page") == SourceType.WEB
        assert classify("https://mytwitter.com/page") == SourceType.WEB

    def test_platform_wins_over_document(self):
        """Test that platform hosts are classified before document heuristics."""
        assert classify("https://x.com/alice/status/1/photo.pdf") == SourceType.TWITTER

    def test_deterministic(self):
        """Test that repeated calls agree."""
        url = normalize("https://Example.com/paper.PDF?utm_source=x")
        assert {classify(url) for _ in range(5)} == {SourceType.PDF}


class TestIsDocumentUrl:
    """Test suite for document URL detection."""

    @pytest.mark.parametrize("url", [
        "https://example.com/a.pdf",
        "https://example.com/pdf/12345",
        "https://example.com/download?type=pdf",
        "https://example.com/export?format=pdf",
        "https://arxiv.org/abs/2312.01234",
    ])
    def test_document_urls(self, url):
        """Test URLs that point at documents."""
        assert is_document_url(url)

    def test_html_page_is_not_document(self):
        """Test that an ordinary page is not a document."""
        assert not is_document_url("https://example.com/pdfs-explained")
