"""Error taxonomy for LinkVault.

Validation and duplicate errors are surfaced to callers and never retried.
Scrape errors are recorded on the capture and eligible for batch retry.
Queue handoff and provider errors are service failures the caller may retry.
"""

from enum import Enum
from typing import Optional


class LinkVaultError(Exception):
    """Base class for all LinkVault errors."""
    pass


class ValidationError(LinkVaultError):
    """Raised when caller input is malformed or unsupported."""
    pass


class InvalidUrlError(ValidationError):
    """Raised when a submitted URL is not an absolute HTTP(S) URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class DuplicateError(LinkVaultError):
    """Raised when a user submits a URL they already captured."""

    def __init__(self, url: str, user_id: str, existing_id: Optional[str] = None):
        self.url = url
        self.user_id = user_id
        self.existing_id = existing_id
        super().__init__(f"URL already captured: {url}")


class ScrapeErrorKind(str, Enum):
    """Scrape failure categories."""
    NETWORK = "network"
    PARSE = "parse"
    UNSUPPORTED_FORMAT = "unsupported-format"


class ScrapeError(LinkVaultError):
    """Raised by scraper strategies when content cannot be acquired."""

    def __init__(self, kind: ScrapeErrorKind, message: str, url: Optional[str] = None,
                 retryable: bool = False):
        self.kind = ScrapeErrorKind(kind)
        self.message = message
        self.url = url
        self.retryable = retryable
        super().__init__(f"[{self.kind.value}] {message}")


class SSRFError(ScrapeError):
    """Raised when a fetch target resolves to a private or internal address."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(ScrapeErrorKind.NETWORK, message, url=url, retryable=False)


class QueueHandoffError(LinkVaultError):
    """Raised when a persisted capture could not be handed to the work queue."""

    retryable = True

    def __init__(self, capture_id: str, message: str = "Failed to queue capture for processing"):
        self.capture_id = capture_id
        super().__init__(message)


class EmbeddingError(LinkVaultError):
    """Raised when the embedding provider fails or returns an unusable vector."""
    pass


class GenerationError(LinkVaultError):
    """Raised when the generative model provider fails."""
    pass


class InvalidTransitionError(LinkVaultError):
    """Raised on an illegal capture status transition."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Illegal status transition: {current} -> {target}")


class RecordNotFoundError(LinkVaultError):
    """Raised when a capture id does not exist in the store."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Content record not found: {record_id}")
