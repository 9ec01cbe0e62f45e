"""Rate limiting for the LinkVault API using slowapi."""

import logging
import threading
from collections import OrderedDict
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from pipelines.pacing import Clock, TokenBucket

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def get_client_ip(request: Request) -> str:
    """Extract client IP considering proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def get_user_identifier(request: Request) -> str:
    """Rate limit key: the authenticated user when known, else the client IP."""
    user_id = getattr(request.state, 'user_id', None) or request.headers.get(USER_HEADER)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


def build_limiter(redis_url: Optional[str] = None, enabled: bool = True) -> Limiter:
    """Per-user limiter, stored in Redis when a URL is configured."""
    if redis_url:
        return Limiter(key_func=get_user_identifier, storage_uri=redis_url, enabled=enabled)
    return Limiter(key_func=get_user_identifier, enabled=enabled)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler for rate limit exceeded responses."""
    response = JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "code": "RATE_LIMITED",
            "detail": f"Rate limit exceeded: {exc.detail}",
        }
    )
    response.headers["Retry-After"] = str(getattr(exc, 'retry_after', 60))
    return response


def setup_rate_limiting(app: FastAPI, limiter: Limiter) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


class DeepModeQuota:
    """Stricter per-user budget for deep retrieval requests.

    Each user gets a token bucket refilled at ``per_minute`` tokens per
    minute, holding at most ``per_minute`` tokens. At most ``max_keys``
    buckets are kept; the least recently used one is dropped first.
    """

    def __init__(self, per_minute: float = 5, clock: Optional[Clock] = None, max_keys: int = 10000):
        if per_minute <= 0:
            raise ValueError("per_minute must be positive")
        if max_keys <= 0:
            raise ValueError("max_keys must be positive")
        self.per_minute = per_minute
        self.max_keys = max_keys
        self._clock = clock
        self._buckets: "OrderedDict[str, TokenBucket]" = OrderedDict()
        self._lock = threading.Lock()

    def _bucket(self, key: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is not None:
                self._buckets.move_to_end(key)
                return bucket
            bucket = TokenBucket(rate=self.per_minute / 60.0, capacity=self.per_minute, clock=self._clock)
            self._buckets[key] = bucket
            while len(self._buckets) > self.max_keys:
                self._buckets.popitem(last=False)
            return bucket

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, key: str) -> bool:
        return self._bucket(key).try_acquire()

    def check(self, key: str) -> None:
        """Raise HTTP 429 when ``key`` has no deep-mode budget left."""
        if not self.allow(key):
            logger.info(f"Deep mode quota exhausted for {key}")
            raise HTTPException(
                status_code=429,
                detail="Deep mode rate limit exceeded",
                headers={"Retry-After": str(int(60 / self.per_minute) or 1)},
            )
