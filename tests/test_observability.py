"""Tests for logging formatters, settings and rate limiting helpers."""

import json
import logging
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from config.settings import Settings
from observability.logging import ColoredFormatter, JSONFormatter, get_logger, get_structured_logger
from server.security.rate_limiting import DeepModeQuota, get_client_ip, get_user_identifier


def make_log_record(**extra):
    record = logging.LogRecord("services.capture", logging.INFO, __file__, 10, "Capture accepted", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def make_request(headers=None, user_id=None, host="10.0.0.5"):
    request = MagicMock()
    request.headers = headers or {}
    request.state = MagicMock(spec=[])
    if user_id:
        request.state.user_id = user_id
    request.client.host = host
    return request


class TestFormatters:
    """Test suite for log formatters."""

    def test_json_includes_correlation_fields(self):
        """Test that extra context lands in the JSON entry."""
        entry = json.loads(JSONFormatter().format(make_log_record(trace_id="abc", capture_id="c1")))
        assert entry["message"] == "Capture accepted"
        assert entry["service"] == "linkvault"
        assert entry["trace_id"] == "abc"
        assert entry["capture_id"] == "c1"

    def test_console_appends_context(self):
        """Test that the console line shows known context fields only."""
        line = ColoredFormatter(use_colors=False).format(make_log_record(trace_id="abc", other="x"))
        assert line.endswith("Capture accepted [trace_id=abc]")



class TestStructuredLogger:
    """Test suite for context-bound loggers."""

    def test_bound_fields_reach_records(self, caplog):
        """Test that bound correlation fields are attached to every record."""
        log = get_structured_logger("services.capture", trace_id="t-1", capture_id="c-1", user_id=None)
        with caplog.at_level(logging.INFO, logger="services.capture"):
            log.info("Processing capture c-1")
            log.bind(user_id="alice").warning("Capture c-1 failed")

        first, second = caplog.records
        assert first.trace_id == "t-1"
        assert first.capture_id == "c-1"
        assert not hasattr(first, "user_id")
        assert second.levelname == "WARNING"
        assert second.user_id == "alice"
        assert second.trace_id == "t-1"

    def test_error_with_exception(self, caplog):
        """Test that exc_info is forwarded."""
        log = get_structured_logger("services.capture", trace_id="t-2")
        with caplog.at_level(logging.ERROR, logger="services.capture"):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                log.error("Unexpected failure", exc_info=True)

        record = caplog.records[0]
        assert record.exc_info[0] is RuntimeError
        assert "trace_id=t-2" in ColoredFormatter(use_colors=False).format(record)

    def test_get_logger(self):
        """Test plain logger lookup."""
        assert get_logger("linkvault.test") is logging.getLogger("linkvault.test")

class TestSettings:
    """Test suite for environment settings."""

    def test_defaults(self, monkeypatch):
        """Test defaults with an empty environment."""
        for name in ("REDIS_URL", "RETRY_BATCH_SIZE", "SCRAPER_SSRF_GUARD"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.queue.redis_url is None
        assert settings.retry.batch_size == 5
        assert settings.scraper.ssrf_guard is True
        assert settings.embedding.max_input_chars == 8191 * 4

    def test_overrides(self, monkeypatch):
        """Test environment overrides."""
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("RETRY_BATCH_SIZE", "12")
        monkeypatch.setenv("SCRAPER_SSRF_GUARD", "off")
        monkeypatch.setenv("API_DEEP_QUERIES_PER_MINUTE", "2.5")
        settings = Settings.from_env()
        assert settings.queue.redis_url == "redis://cache:6379/1"
        assert settings.retry.batch_size == 12
        assert settings.scraper.ssrf_guard is False
        assert settings.api.deep_queries_per_minute == 2.5


class TestRateLimitKeys:
    """Test suite for rate limit key functions."""

    def test_user_key_preferred(self):
        """Test that the authenticated user keys the limit."""
        assert get_user_identifier(make_request(user_id="alice")) == "user:alice"
        assert get_user_identifier(make_request(headers={"X-User-Id": "bob"})) == "user:bob"

    def test_ip_fallback(self):
        """Test anonymous keys from proxy headers or the socket."""
        assert get_user_identifier(make_request()) == "ip:10.0.0.5"
        forwarded = make_request(headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert get_client_ip(forwarded) == "203.0.113.9"


class TestDeepModeQuota:
    """Test suite for DeepModeQuota."""

    def test_budget_refills(self, fake_clock):
        """Test exhaustion and refill over time."""
        quota = DeepModeQuota(per_minute=2, clock=fake_clock)
        assert quota.allow("user:alice")
        assert quota.allow("user:alice")
        assert not quota.allow("user:alice")
        assert quota.allow("user:bob")

        fake_clock.advance(31)
        assert quota.allow("user:alice")

    def test_check_raises_429(self, fake_clock):
        """Test the HTTP error and its Retry-After header."""
        quota = DeepModeQuota(per_minute=1, clock=fake_clock)
        quota.check("user:alice")
        with pytest.raises(HTTPException) as exc_info:
            quota.check("user:alice")
        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "60"

    def test_rejects_non_positive_rate(self):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            DeepModeQuota(per_minute=0)
        with pytest.raises(ValueError):
            DeepModeQuota(per_minute=1, max_keys=0)

    def test_bucket_count_is_bounded(self, fake_clock):
        """Test that buckets for idle users are evicted least recently used first."""
        quota = DeepModeQuota(per_minute=1, clock=fake_clock, max_keys=2)
        assert quota.allow("user:alice")
        assert quota.allow("user:bob")
        assert not quota.allow("user:alice")

        assert quota.allow("user:carol")
        assert len(quota) == 2

        # bob was least recently used, so his exhausted bucket is gone
        assert quota.allow("user:bob")
        # alice was evicted by bob's new bucket and starts full again
        assert quota.allow("user:alice")
        assert len(quota) == 2

    def test_many_users_stay_within_bound(self, fake_clock):
        """Test the map size under a stream of distinct users."""
        quota = DeepModeQuota(per_minute=5, clock=fake_clock, max_keys=100)
        for i in range(1000):
            quota.allow(f"user:{i}")
        assert len(quota) == 100
