"""
Sliding-window request throttling for the auth endpoints.

Each key keeps the timestamps of its admitted requests. A request is
admitted while fewer than ``limit.requests`` timestamps fall inside the
window; rejected requests are not recorded, so a blocked client is let
back in as soon as its oldest admitted request ages out.
Counters live in process memory and reset on restart.
"""
import asyncio
from typing import Callable, Dict, Optional
from datetime import datetime, timedelta
from collections import defaultdict, deque
from dataclasses import dataclass
import logging

from services.security import SecurityUtils

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


@dataclass(frozen=True)
class RateLimit:
    requests: int
    window_seconds: int


@dataclass
class RateLimitResult:
    allowed: bool
    limit: RateLimit
    remaining: int
    reset_time: datetime
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit.requests),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time.timestamp())),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class InMemoryRateLimiter:
    def __init__(self, clock: Callable[[], datetime] = SecurityUtils.get_utc_now):
        self._clock = clock
        self._hits: Dict[str, deque] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: RateLimit) -> RateLimitResult:
        """Record a request for ``key`` if the budget allows it."""
        async with self._lock:
            now = self._clock()
            window = timedelta(seconds=limit.window_seconds)
            hits = self._hits[key]
            while hits and hits[0] <= now - window:
                hits.popleft()

            if len(hits) >= limit.requests:
                reset_time = hits[0] + window
                retry_after = max(1, int((reset_time - now).total_seconds()))
                SecurityUtils.log_security_event(
                    "rate_limit_exceeded",
                    {"key": key, "requests": len(hits), "limit": limit.requests,
                     "window_seconds": limit.window_seconds},
                )
                return RateLimitResult(False, limit, 0, reset_time, retry_after)

            hits.append(now)
            return RateLimitResult(True, limit, limit.requests - len(hits), hits[0] + window)

    async def cleanup_expired(self, max_age_seconds: int = 3600) -> int:
        """Forget keys with no request newer than ``max_age_seconds``. Returns how many were dropped."""
        async with self._lock:
            cutoff = self._clock() - timedelta(seconds=max_age_seconds)
            stale = [key for key, hits in self._hits.items() if not hits or hits[-1] < cutoff]
            for key in stale:
                del self._hits[key]
            return len(stale)

    def tracked_keys(self) -> int:
        return len(self._hits)


async def cleanup_rate_limiter(rate_limiter: InMemoryRateLimiter, max_age_seconds: int = 3600):
    """Periodically drop idle limiter keys; runs until cancelled."""
    while True:
        try:
            dropped = await rate_limiter.cleanup_expired(max_age_seconds)
            if dropped:
                logger.debug(f"Rate limiter dropped {dropped} idle keys")
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in rate limiter cleanup: {e}")
            await asyncio.sleep(60)
