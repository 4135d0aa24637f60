"""
Tests for the token-bucket rate limiter.
"""

import asyncio
import time

import pytest

from openbot.agent.ratelimit import DEFAULT_BURST, DEFAULT_RATE_PER_MINUTE, RateLimiter


def test_non_positive_values_use_defaults():
    """Test that zero or negative settings fall back to the defaults."""
    limiter = RateLimiter(max_burst=0, rate_per_minute=-1)

    assert limiter.max == DEFAULT_BURST
    assert limiter.rate == pytest.approx(DEFAULT_RATE_PER_MINUTE / 60.0)
    assert limiter.available == DEFAULT_BURST


@pytest.mark.asyncio
async def test_burst_is_immediate():
    """Test that the first `burst` waits return without blocking."""
    limiter = RateLimiter(max_burst=3, rate_per_minute=60)

    start = time.monotonic()
    for _ in range(3):
        await limiter.wait()
    elapsed = time.monotonic() - start

    assert elapsed < 0.1
    assert limiter.available < 1.0


@pytest.mark.asyncio
async def test_wait_blocks_after_burst():
    """Test that the call after the burst waits about 1/rate seconds."""
    limiter = RateLimiter(max_burst=2, rate_per_minute=600)  # one token per 0.1s

    await limiter.wait()
    await limiter.wait()

    start = time.monotonic()
    await limiter.wait()
    elapsed = time.monotonic() - start

    assert 0.07 <= elapsed < 0.5


@pytest.mark.asyncio
async def test_cancelled_before_wait_does_not_take_token():
    """Test that an already-cancelled caller fails even with tokens available."""
    limiter = RateLimiter(max_burst=2, rate_per_minute=60)

    task = asyncio.create_task(limiter.wait())
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert limiter.available == 2


@pytest.mark.asyncio
async def test_cancel_while_blocked():
    """Test that cancelling a blocked waiter raises CancelledError."""
    limiter = RateLimiter(max_burst=1, rate_per_minute=1)
    await limiter.wait()

    task = asyncio.create_task(limiter.wait())
    await asyncio.sleep(0.01)
    assert not task.done()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_independent_limiters():
    """Test that two limiters do not share state."""
    first = RateLimiter(max_burst=1, rate_per_minute=1)
    second = RateLimiter(max_burst=1, rate_per_minute=1)

    await first.wait()
    await asyncio.wait_for(second.wait(), timeout=0.1)
