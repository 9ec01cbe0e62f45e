"""Tests for request pacing with an injected clock."""

import pytest

from pipelines.pacing import Pacer, TokenBucket


class TestPacer:
    """Test suite for Pacer."""

    @pytest.mark.asyncio
    async def test_first_call_does_not_sleep(self, fake_clock):
        """Test that the first wait returns immediately."""
        pacer = Pacer(0.5, clock=fake_clock, sleep=fake_clock.sleep)
        assert await pacer.wait() == 0.0
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_enforces_interval(self, fake_clock):
        """Test that back-to-back calls are spaced by the interval."""
        pacer = Pacer(0.5, clock=fake_clock, sleep=fake_clock.sleep)
        await pacer.wait()
        fake_clock.advance(0.2)
        slept = await pacer.wait()
        assert slept == pytest.approx(0.3)
        assert fake_clock.sleeps == [pytest.approx(0.3)]

    @pytest.mark.asyncio
    async def test_no_sleep_when_interval_elapsed(self, fake_clock):
        """Test that slow callers are not delayed further."""
        pacer = Pacer(0.5, clock=fake_clock, sleep=fake_clock.sleep)
        await pacer.wait()
        fake_clock.advance(2.0)
        assert await pacer.wait() == 0.0

    @pytest.mark.asyncio
    async def test_reset_forgets_previous_call(self, fake_clock):
        """Test that reset makes the next call behave like the first."""
        pacer = Pacer(1.0, clock=fake_clock, sleep=fake_clock.sleep)
        await pacer.wait()
        pacer.reset()
        assert await pacer.wait() == 0.0

    def test_negative_interval_rejected(self):
        """Test that a negative interval is refused."""
        with pytest.raises(ValueError):
            Pacer(-1)


class TestTokenBucket:
    """Test suite for TokenBucket."""

    def test_starts_full(self, fake_clock):
        """Test that a new bucket allows a burst up to capacity."""
        bucket = TokenBucket(rate=1.0, capacity=3, clock=fake_clock)
        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_refills_over_time(self, fake_clock):
        """Test that tokens come back at the configured rate."""
        bucket = TokenBucket(rate=2.0, capacity=2, clock=fake_clock)
        bucket.try_acquire()
        bucket.try_acquire()
        assert not bucket.try_acquire()
        fake_clock.advance(0.5)
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_never_exceeds_capacity(self, fake_clock):
        """Test that idle time does not accumulate beyond capacity."""
        bucket = TokenBucket(rate=10.0, capacity=2, clock=fake_clock)
        fake_clock.advance(100)
        assert bucket.tokens == pytest.approx(2)

    @pytest.mark.asyncio
    async def test_acquire_waits_for_token(self, fake_clock):
        """Test that acquire sleeps just long enough for the deficit."""
        bucket = TokenBucket(rate=1.0, capacity=1, clock=fake_clock, sleep=fake_clock.sleep)
        assert await bucket.acquire() == 0.0
        slept = await bucket.acquire()
        assert slept == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_acquire_more_than_capacity_rejected(self, fake_clock):
        """Test that impossible requests fail instead of waiting forever."""
        bucket = TokenBucket(rate=1.0, capacity=2, clock=fake_clock, sleep=fake_clock.sleep)
        with pytest.raises(ValueError):
            await bucket.acquire(3)
