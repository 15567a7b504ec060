"""
Tests for rate_limiter.py

Token bucket refill, waiting for a token, presets and the registry.
"""
import asyncio

import pytest

from prospect_intel.services.rate_limiter import (
    RATE_LIMIT_PRESETS,
    RateLimitConfig,
    RateLimiterRegistry,
    TokenBucketLimiter,
)
from tests.fixtures.provider_payloads import FakeClock


def _limiter(max_tokens=2, rate=1.0):
    clock = FakeClock()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.advance(seconds)

    limiter = TokenBucketLimiter(
        "fec", RateLimitConfig(max_tokens=max_tokens, refill_per_second=rate), clock=clock, sleep=fake_sleep
    )
    return limiter, clock, sleeps


class TestTokenBucket:
    """Burst capacity, refill and waiting."""

    def test_burst_then_empty(self):
        """A full bucket admits max_tokens calls, then reports the wait."""
        limiter, _, _ = _limiter(max_tokens=2, rate=0.5)
        assert limiter.try_acquire() == 0.0
        assert limiter.try_acquire() == 0.0
        assert limiter.try_acquire() == pytest.approx(2.0)

    def test_refill_is_capped(self):
        """Idle time never fills the bucket beyond its capacity."""
        limiter, clock, _ = _limiter(max_tokens=2, rate=1.0)
        limiter.try_acquire()
        clock.advance(100)
        assert limiter.available_tokens() == 2.0

    def test_acquire_waits_for_refill(self):
        """An empty bucket sleeps until the next token is due."""
        limiter, _, sleeps = _limiter(max_tokens=1, rate=4.0)

        async def go():
            first = await limiter.acquire()
            second = await limiter.acquire()
            return first, second

        first, second = asyncio.run(go())

        assert first == 0.0
        assert second == pytest.approx(0.25)
        assert sum(sleeps) == pytest.approx(0.25)
        snap = limiter.snapshot()
        assert snap["total_acquired"] == 2
        assert snap["total_waits"] == 1

    def test_reset_refills(self):
        """reset restores a full bucket."""
        limiter, _, _ = _limiter(max_tokens=3)
        for _ in range(3):
            limiter.try_acquire()
        limiter.reset()
        assert limiter.available_tokens() == 3.0

    def test_invalid_config_rejected(self):
        """A bucket must hold a token and refill."""
        with pytest.raises(ValueError):
            RateLimitConfig(max_tokens=0)
        with pytest.raises(ValueError):
            RateLimitConfig(refill_per_second=0)


class TestLimiterRegistry:
    """Registry keys limiters by provider name."""

    def test_presets_and_default(self):
        """Known providers use their published limit, others the default."""
        registry = RateLimiterRegistry(RateLimitConfig(max_tokens=4, refill_per_second=2.0))
        assert registry.get_or_create("sec_edgar").config == RATE_LIMIT_PRESETS["sec_edgar"]
        assert registry.get_or_create("propublica").config == RateLimitConfig(4, 2.0)
        assert registry.get_or_create("propublica") is registry.get("propublica")
        assert set(registry.snapshot()) == {"sec_edgar", "propublica"}

    def test_from_settings(self):
        """Default bucket comes from settings values."""

        class _Settings:
            PROVIDER_RATE_LIMIT_BURST = 3
            PROVIDER_RATE_LIMIT_PER_SECOND = 1.5

        registry = RateLimiterRegistry.from_settings(_Settings())
        assert registry.default_config == RateLimitConfig(3, 1.5)
