from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_tokens: int = 10
    refill_per_second: float = 5.0

    def __post_init__(self) -> None:
        if self.max_tokens < 1 or self.refill_per_second <= 0:
            raise ValueError("rate limit needs max_tokens >= 1 and a positive refill rate")


# Published provider limits; anything not listed uses the configured default.
RATE_LIMIT_PRESETS: Dict[str, RateLimitConfig] = {
    # SEC fair-access policy: 10 requests per second
    "sec_edgar": RateLimitConfig(max_tokens=10, refill_per_second=10.0),
    # OpenFEC: 1,000 requests per hour per key
    "fec": RateLimitConfig(max_tokens=10, refill_per_second=1000 / 3600),
    "exa_websets": RateLimitConfig(max_tokens=5, refill_per_second=2.0),
    "wikidata": RateLimitConfig(max_tokens=10, refill_per_second=5.0),
}


class TokenBucketLimiter:
    """
    Token bucket pacing calls to one provider.

    The bucket starts full and refills continuously at ``refill_per_second``.
    ``acquire`` sleeps until a token is available; callers bound the wait
    with their own timeout (the provider client runs it inside the call's
    ``asyncio.wait_for``).
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

        self._tokens = float(self.config.max_tokens)
        self._updated_at = clock()

        self._total_acquired = 0
        self._total_waits = 0
        self._total_wait_seconds = 0.0

    def _refill(self, now: float) -> None:
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(
                float(self.config.max_tokens),
                self._tokens + elapsed * self.config.refill_per_second,
            )
            self._updated_at = now

    def try_acquire(self) -> float:
        """Take a token if one is available. Returns 0.0, or the seconds until one will be."""
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1:
                self._tokens -= 1
                self._total_acquired += 1
                return 0.0
            return (1 - self._tokens) / self.config.refill_per_second

    async def acquire(self) -> float:
        """Wait for a token; returns the seconds spent waiting."""
        waited = 0.0
        while True:
            delay = self.try_acquire()
            if delay <= 0:
                break
            logger.debug(
                "Rate limiter '%s' waiting %.2fs for a token",
                self.name,
                delay,
                extra={"provider": self.name},
            )
            await self._sleep(delay)
            waited += delay

        if waited:
            with self._lock:
                self._total_waits += 1
                self._total_wait_seconds += waited
        return waited

    def available_tokens(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens

    def reset(self) -> None:
        with self._lock:
            self._tokens = float(self.config.max_tokens)
            self._updated_at = self._clock()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            self._refill(self._clock())
            return {
                "name": self.name,
                "available_tokens": round(self._tokens, 2),
                "max_tokens": self.config.max_tokens,
                "refill_per_second": self.config.refill_per_second,
                "total_acquired": self._total_acquired,
                "total_waits": self._total_waits,
                "total_wait_seconds": round(self._total_wait_seconds, 3),
            }


class RateLimiterRegistry:
    """
    Keyed store of limiters (provider name -> bucket), shared like the
    breaker registry: one per process, handed to every ResilientProviderClient.
    """

    def __init__(
        self,
        default_config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.default_config = default_config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._limiters: Dict[str, TokenBucketLimiter] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "RateLimiterRegistry":
        return cls(
            default_config=RateLimitConfig(
                max_tokens=int(getattr(settings, "PROVIDER_RATE_LIMIT_BURST", 10)),
                refill_per_second=float(getattr(settings, "PROVIDER_RATE_LIMIT_PER_SECOND", 5.0)),
            )
        )

    def get_or_create(self, name: str, config: Optional[RateLimitConfig] = None) -> TokenBucketLimiter:
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limiter = TokenBucketLimiter(
                    name,
                    config or RATE_LIMIT_PRESETS.get(name) or self.default_config,
                    clock=self._clock,
                    sleep=self._sleep,
                )
                self._limiters[name] = limiter
            return limiter

    def get(self, name: str) -> Optional[TokenBucketLimiter]:
        with self._lock:
            return self._limiters.get(name)

    def _all(self) -> List[TokenBucketLimiter]:
        with self._lock:
            return list(self._limiters.values())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {limiter.name: limiter.snapshot() for limiter in self._all()}

    def reset_all(self) -> None:
        for limiter in self._all():
            limiter.reset()
