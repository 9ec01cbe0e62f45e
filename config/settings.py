"""Application settings built from environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field

from .database import DatabaseConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


class ScraperConfig(BaseModel):
    """Fetch and extraction limits."""
    timeout: float = Field(default=15.0, description="Per-request timeout in seconds")
    max_images: int = Field(default=10, description="Images kept per capture")
    max_body_chars: int = Field(default=5000, description="Web page body text limit")
    max_retries: int = Field(default=1, description="Extra fetch attempts for transient errors")
    ssrf_guard: bool = Field(default=True, description="Block private and internal fetch targets")

    @classmethod
    def from_env(cls) -> 'ScraperConfig':
        return cls(
            timeout=float(os.getenv('SCRAPER_TIMEOUT', '15')),
            max_images=int(os.getenv('SCRAPER_MAX_IMAGES', '10')),
            max_body_chars=int(os.getenv('SCRAPER_MAX_BODY_CHARS', '5000')),
            max_retries=int(os.getenv('SCRAPER_MAX_RETRIES', '1')),
            ssrf_guard=_env_bool('SCRAPER_SSRF_GUARD', True),
        )


class ThreadConfig(BaseModel):
    """Thread reconstruction and linked-content settings."""
    mirror_api_url: str = Field(default="https://api.fxtwitter.com")
    unroll_base_url: str = Field(default="https://threadreaderapp.com/thread")
    max_hops: int = Field(default=10)
    hop_interval: float = Field(default=0.3, description="Seconds between reply-chain lookups")
    max_linked_pages: int = Field(default=5)
    linked_page_interval: float = Field(default=0.5, description="Seconds between linked page scrapes")

    @classmethod
    def from_env(cls) -> 'ThreadConfig':
        return cls(
            mirror_api_url=os.getenv('THREAD_MIRROR_API_URL', 'https://api.fxtwitter.com'),
            unroll_base_url=os.getenv('THREAD_UNROLL_BASE_URL', 'https://threadreaderapp.com/thread'),
            max_hops=int(os.getenv('THREAD_MAX_HOPS', '10')),
            hop_interval=float(os.getenv('THREAD_HOP_INTERVAL', '0.3')),
            max_linked_pages=int(os.getenv('LINKED_MAX_PAGES', '5')),
            linked_page_interval=float(os.getenv('LINKED_PAGE_INTERVAL', '0.5')),
        )


class QueueConfig(BaseModel):
    """Work queue connection."""
    redis_url: Optional[str] = Field(default=None, description="Redis URL; in-memory queue when unset")
    queue_name: str = Field(default="linkvault:captures")
    consume_timeout: int = Field(default=5, description="Blocking pop timeout in seconds")

    @classmethod
    def from_env(cls) -> 'QueueConfig':
        return cls(
            redis_url=os.getenv('REDIS_URL'),
            queue_name=os.getenv('CAPTURE_QUEUE_NAME', 'linkvault:captures'),
            consume_timeout=int(os.getenv('CAPTURE_QUEUE_TIMEOUT', '5')),
        )


class RetryConfig(BaseModel):
    """Batch retry of failed captures and reconciliation of stranded pending ones."""
    batch_size: int = Field(default=5)
    delay_seconds: float = Field(default=30.0)
    schedule_cron: str = Field(default="0 * * * *", description="Periodic failed-capture sweep")
    backfill_cron: str = Field(default="30 * * * *", description="Periodic embedding backfill")
    stale_pending_seconds: float = Field(default=900.0,
                                         description="Age at which an unprocessed pending capture is republished")
    reconcile_cron: str = Field(default="*/15 * * * *", description="Periodic sweep of stranded pending captures")

    @classmethod
    def from_env(cls) -> 'RetryConfig':
        return cls(
            batch_size=int(os.getenv('RETRY_BATCH_SIZE', '5')),
            delay_seconds=float(os.getenv('RETRY_DELAY_SECONDS', '30')),
            schedule_cron=os.getenv('RETRY_SCHEDULE_CRON', '0 * * * *'),
            backfill_cron=os.getenv('BACKFILL_SCHEDULE_CRON', '30 * * * *'),
            stale_pending_seconds=float(os.getenv('RETRY_STALE_PENDING_SECONDS', '900')),
            reconcile_cron=os.getenv('RECONCILE_SCHEDULE_CRON', '*/15 * * * *'),
        )


class EmbeddingConfig(BaseModel):
    """Embedding provider selection."""
    provider: str = Field(default="openai", description="openai or sentence-transformers")
    model: str = Field(default="text-embedding-3-small")
    dimensions: int = Field(default=1536)
    max_input_tokens: int = Field(default=8191)
    chars_per_token: int = Field(default=4)
    api_key: Optional[str] = Field(default=None)

    @property
    def max_input_chars(self) -> int:
        return self.max_input_tokens * self.chars_per_token

    @classmethod
    def from_env(cls) -> 'EmbeddingConfig':
        return cls(
            provider=os.getenv('EMBEDDING_PROVIDER', 'openai'),
            model=os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small'),
            dimensions=int(os.getenv('EMBEDDING_DIMENSIONS', '1536')),
            max_input_tokens=int(os.getenv('EMBEDDING_MAX_INPUT_TOKENS', '8191')),
            api_key=os.getenv('OPENAI_API_KEY'),
        )


class GenerationConfig(BaseModel):
    """Generative model used for answers."""
    model: str = Field(default="claude-sonnet-4-20250514")
    api_key: Optional[str] = Field(default=None)
    timeout: float = Field(default=120.0)

    @classmethod
    def from_env(cls) -> 'GenerationConfig':
        return cls(
            model=os.getenv('GENERATION_MODEL', 'claude-sonnet-4-20250514'),
            api_key=os.getenv('ANTHROPIC_API_KEY'),
            timeout=float(os.getenv('GENERATION_TIMEOUT', '120')),
        )


class LogConfig(BaseModel):
    level: str = Field(default="INFO")
    use_json: bool = Field(default=False)
    log_file: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls) -> 'LogConfig':
        return cls(
            level=os.getenv('LINKVAULT_LOG_LEVEL', 'INFO'),
            use_json=_env_bool('LINKVAULT_LOG_JSON', False),
            log_file=os.getenv('LINKVAULT_LOG_FILE'),
        )


class APIConfig(BaseModel):
    """HTTP surface limits."""
    query_rate_limit: str = Field(default="30/minute")
    deep_queries_per_minute: float = Field(default=5.0)
    capture_rate_limit: str = Field(default="60/minute")

    @classmethod
    def from_env(cls) -> 'APIConfig':
        return cls(
            query_rate_limit=os.getenv('API_QUERY_RATE_LIMIT', '30/minute'),
            deep_queries_per_minute=float(os.getenv('API_DEEP_QUERIES_PER_MINUTE', '5')),
            capture_rate_limit=os.getenv('API_CAPTURE_RATE_LIMIT', '60/minute'),
        )


class Settings(BaseModel):
    """All configuration sections."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scraper: ScraperConfig = Field(default_factory=ScraperConfig)
    thread: ThreadConfig = Field(default_factory=ThreadConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            database=DatabaseConfig.from_env(),
            scraper=ScraperConfig.from_env(),
            thread=ThreadConfig.from_env(),
            queue=QueueConfig.from_env(),
            retry=RetryConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            generation=GenerationConfig.from_env(),
            logging=LogConfig.from_env(),
            api=APIConfig.from_env(),
        )
