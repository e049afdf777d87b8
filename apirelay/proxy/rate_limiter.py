"""
Rate Limiter

Fixed-window request counters keyed by (tier, client) with several
independently configured tiers.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

import structlog

from apirelay.proxy.config import RateLimitTier, default_tiers

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitBucket:
    """Request count for one client within the current window."""

    window_start: float
    count: int = 0


@dataclass
class RateLimitResult:
    """Outcome of an admission attempt."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: Optional[int] = None

    def headers(self, now: float) -> Dict[str, str]:
        """Standard rate limit response headers."""
        reset_in = max(0, math.ceil(self.reset_at - now))
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(reset_in),
        }
        if not self.allowed and self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class RateLimiter:
    """
    Tiered fixed-window rate limiter.

    Every admission, successful or not, counts against the window. The
    increment and comparison happen under a lock so concurrent requests
    from one client cannot overshoot the limit.
    """

    def __init__(
        self,
        tiers: Optional[Iterable[RateLimitTier]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.tiers: Dict[str, RateLimitTier] = {
            tier.name: tier for tier in (tiers if tiers is not None else default_tiers())
        }
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], RateLimitBucket] = {}
        self._lock = asyncio.Lock()
        self._limited_count = 0

        logger.info(
            "rate_limiter_initialized",
            tiers={
                name: f"{tier.max_requests}/{tier.window_seconds:g}s"
                for name, tier in self.tiers.items()
            },
        )

    def now(self) -> float:
        return self._clock()

    async def admit(self, limiter_id: str, client_key: str) -> RateLimitResult:
        """
        Count a request for ``client_key`` against tier ``limiter_id``.

        Raises:
            KeyError: If the tier is not configured
        """
        tier = self.tiers[limiter_id]

        async with self._lock:
            now = self._clock()
            key = (limiter_id, client_key)
            bucket = self._buckets.get(key)

            if bucket is None or now - bucket.window_start >= tier.window_seconds:
                bucket = RateLimitBucket(window_start=now)
                self._buckets[key] = bucket

            reset_at = bucket.window_start + tier.window_seconds

            if bucket.count >= tier.max_requests:
                self._limited_count += 1
                retry_after = max(1, math.ceil(reset_at - now))
                logger.warning(
                    "rate_limited",
                    tier=limiter_id,
                    client=client_key,
                    retry_after=retry_after,
                )
                return RateLimitResult(
                    allowed=False,
                    limit=tier.max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=retry_after,
                )

            bucket.count += 1
            return RateLimitResult(
                allowed=True,
                limit=tier.max_requests,
                remaining=tier.max_requests - bucket.count,
                reset_at=reset_at,
            )

    def peek(self, limiter_id: str, client_key: str) -> Optional[RateLimitResult]:
        """Current standing of a client without counting a request."""
        tier = self.tiers[limiter_id]
        bucket = self._buckets.get((limiter_id, client_key))
        now = self._clock()
        if bucket is None or now - bucket.window_start >= tier.window_seconds:
            return None

        reset_at = bucket.window_start + tier.window_seconds
        allowed = bucket.count < tier.max_requests
        return RateLimitResult(
            allowed=allowed,
            limit=tier.max_requests,
            remaining=max(0, tier.max_requests - bucket.count),
            reset_at=reset_at,
            retry_after_seconds=None if allowed else max(1, math.ceil(reset_at - now)),
        )

    async def reset(self, limiter_id: Optional[str] = None, client_key: Optional[str] = None) -> None:
        """Drop buckets matching the given tier and/or client."""
        async with self._lock:
            for key in list(self._buckets):
                if limiter_id is not None and key[0] != limiter_id:
                    continue
                if client_key is not None and key[1] != client_key:
                    continue
                del self._buckets[key]

    async def sweep(self) -> int:
        """Remove buckets whose window has elapsed. Returns how many."""
        async with self._lock:
            now = self._clock()
            live = {
                key: bucket
                for key, bucket in self._buckets.items()
                if now - bucket.window_start < self.tiers[key[0]].window_seconds
            }
            removed = len(self._buckets) - len(live)
            self._buckets = live
        return removed

    def get_stats(self) -> dict:
        """Get limiter statistics."""
        return {
            "active_buckets": len(self._buckets),
            "limited_count": self._limited_count,
            "tiers": {
                name: {"window_seconds": tier.window_seconds, "max": tier.max_requests}
                for name, tier in self.tiers.items()
            },
        }
