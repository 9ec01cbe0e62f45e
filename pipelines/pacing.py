"""Request pacing for third-party APIs.

Thread walks, linked-content scraping and batch retries all need fixed gaps
between upstream calls. Clock and sleep are injectable so tests can advance
time without waiting.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class Pacer:
    """Enforces a minimum interval between successive calls to :meth:`wait`.

    The first call never sleeps.
    """

    def __init__(self, interval: float, clock: Optional[Clock] = None,
                 sleep: Optional[Sleeper] = None, name: str = "pacer"):
        if interval < 0:
            raise ValueError("interval must be non-negative")
        self.interval = interval
        self.name = name
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last: Optional[float] = None

    async def wait(self) -> float:
        """Sleep until the interval since the previous call has elapsed.

        Returns:
            Seconds slept (0.0 when no wait was needed)
        """
        slept = 0.0
        if self._last is not None:
            elapsed = self._clock() - self._last
            if elapsed < self.interval:
                slept = self.interval - elapsed
                logger.debug(f"{self.name}: sleeping {slept:.3f}s")
                await self._sleep(slept)
        self._last = self._clock()
        return slept

    def reset(self):
        self._last = None


class TokenBucket:
    """Token bucket limiter: ``rate`` tokens per second up to ``capacity``."""

    def __init__(self, rate: float, capacity: float, clock: Optional[Clock] = None,
                 sleep: Optional[Sleeper] = None):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(capacity)
        self._updated = self._clock()

    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take tokens if available without waiting."""
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    async def acquire(self, tokens: float = 1.0) -> float:
        """Wait until ``tokens`` are available, then take them.

        Returns:
            Total seconds slept
        """
        if tokens > self.capacity:
            raise ValueError("cannot acquire more tokens than the bucket capacity")
        slept = 0.0
        while not self.try_acquire(tokens):
            deficit = tokens - self._tokens
            delay = deficit / self.rate
            await self._sleep(delay)
            slept += delay
        return slept
