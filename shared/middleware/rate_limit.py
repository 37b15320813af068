"""
shared/middleware/rate_limit.py
Fixed-window rate limiting keyed by client address.

FixedWindowRateLimiter keeps windows in process memory and takes an
injectable clock. RedisRateLimiter shares windows across instances.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float         # epoch seconds
    retry_after: int        # seconds; 0 when allowed

    def headers(self) -> Dict[str, str]:
        reset = datetime.fromtimestamp(self.reset_at, tz=timezone.utc)
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset.isoformat().replace("+00:00", "Z"),
        }


def client_key(request: Request) -> str:
    """First X-Forwarded-For entry, else the transport peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    address = forwarded.split(",")[0].strip() if forwarded else ""
    if not address:
        address = request.client.host if request.client else "unknown"
    return f"{KEY_PREFIX}{address}"


class RateLimiter:
    """Interface: ``await limiter.is_allowed(key) -> RateLimitDecision``."""

    def __init__(self, window_seconds: int = 900, max_requests: int = 100):
        if window_seconds <= 0 or max_requests <= 0:
            raise ValueError("window_seconds and max_requests must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests

    async def is_allowed(self, key: str) -> RateLimitDecision:
        raise NotImplementedError

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        return 0

    def _decide(self, count: int, reset_at: float, now: float) -> RateLimitDecision:
        allowed = count <= self.max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter(RateLimiter):
    """In-memory limiter. Counter updates are serialized under a lock."""

    def __init__(
        self,
        window_seconds: int = 900,
        max_requests: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(window_seconds, max_requests)
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[key] = window
            window.count += 1
            count, reset_at = window.count, window.reset_at
        return self._decide(count, reset_at, now)

    async def is_allowed(self, key: str) -> RateLimitDecision:
        return self.check(key)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if w.reset_at <= now]
            for k in expired:
                del self._windows[k]
        if expired:
            logger.debug("Rate limiter swept %d expired window(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter(RateLimiter):
    """Shared limiter: INCR plus PEXPIRE on the first hit of each window."""

    def __init__(
        self,
        client_factory: Callable,
        window_seconds: int = 900,
        max_requests: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(window_seconds, max_requests)
        self._client_factory = client_factory
        self._clock = clock

    async def is_allowed(self, key: str) -> RateLimitDecision:
        client = self._client_factory()
        window_ms = self.window_seconds * 1000

        pipe = client.pipeline()
        pipe.incr(key)
        pipe.pttl(key)
        count, ttl_ms = await pipe.execute()

        if count == 1 or ttl_ms is None or ttl_ms < 0:
            await client.pexpire(key, window_ms)
            ttl_ms = window_ms

        now = self._clock()
        return self._decide(int(count), now + ttl_ms / 1000, now)


async def run_sweeper(limiter: RateLimiter, interval_seconds: float) -> None:
    """Background task: periodically drop expired windows until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = limiter.sweep()
        if removed:
            logger.info("Rate limit sweep removed %d window(s)", removed)


def build_rate_limiter(backend: str, window_seconds: int, max_requests: int) -> RateLimiter:
    if backend == "redis":
        from config.redis_client import get_redis
        return RedisRateLimiter(get_redis, window_seconds, max_requests)
    return FixedWindowRateLimiter(window_seconds, max_requests)


def rate_limit_response_body(decision: RateLimitDecision, message: Optional[str] = None) -> dict:
    return {
        "error": "Too Many Requests",
        "message": message or "Rate limit exceeded. Please try again later.",
        "retryAfterSeconds": decision.retry_after,
    }
