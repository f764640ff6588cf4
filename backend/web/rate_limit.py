"""
Fixed-window rate limiting for API routes.

Why:
    The access gate throttles ``/api/`` traffic per client IP before any
    authentication work happens. Counter state sits behind ``CounterStore`` so
    a single process can keep it in memory while multi-instance deployments
    share it through Redis.

Semantics:
    A client's window starts with its first hit. Requests are counted until
    ``window_seconds`` have elapsed since that hit; the next request then starts
    a fresh window. Increments are best-effort under concurrency.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger("campusboard.web.rate_limit")


class CounterStore(Protocol):
    async def increment(self, key: str, *, window_seconds: int, now: float) -> Tuple[int, float]:
        """Count one hit and return ``(count, seconds_until_reset)``."""
        ...

    async def prune(self, *, now: float) -> int:
        """Evict expired windows and return how many were removed."""
        ...


class InMemoryCounterStore:
    """Process-local counters; stale windows are evicted lazily and by ``prune``."""

    def __init__(self, *, sweep_every: int = 1000) -> None:
        self._windows: Dict[str, Tuple[int, float, float]] = {}
        self._sweep_every = max(1, int(sweep_every))
        self._hits_since_sweep = 0

    def __len__(self) -> int:
        return len(self._windows)

    async def increment(self, key: str, *, window_seconds: int, now: float) -> Tuple[int, float]:
        self._hits_since_sweep += 1
        if self._hits_since_sweep >= self._sweep_every:
            await self.prune(now=now)
        count, started, window = self._windows.get(key, (0, now, float(window_seconds)))
        if now - started >= window:
            count, started = 0, now
        count += 1
        self._windows[key] = (count, started, float(window_seconds))
        return count, started + window_seconds - now

    async def prune(self, *, now: float) -> int:
        expired = [k for k, (_, started, window) in self._windows.items() if now - started >= window]
        for k in expired:
            self._windows.pop(k, None)
        self._hits_since_sweep = 0
        return len(expired)


class RedisCounterStore:
    """Shared counters using INCR plus EXPIRE on the first hit of a window."""

    def __init__(self, client, *, prefix: str = "campusboard:rl:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True))

    async def increment(self, key: str, *, window_seconds: int, now: float) -> Tuple[int, float]:
        rkey = f"{self._prefix}{key}"
        count = int(await self._client.incr(rkey))
        if count == 1:
            await self._client.expire(rkey, int(window_seconds))
        ttl = await self._client.ttl(rkey)
        if ttl is None or int(ttl) < 0:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE); restore it.
            await self._client.expire(rkey, int(window_seconds))
            ttl = window_seconds
        return count, float(ttl)

    async def prune(self, *, now: float) -> int:
        # Redis expires keys on its own.
        return 0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int


class RateLimiter:
    def __init__(
        self,
        store: Optional[CounterStore] = None,
        *,
        max_requests: int = 60,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store if store is not None else InMemoryCounterStore()
        self.max_requests = int(max_requests)
        self.window_seconds = int(window_seconds)
        self._clock = clock

    async def hit(self, key: str) -> RateLimitDecision:
        count, remaining = await self.store.increment(key, window_seconds=self.window_seconds, now=self._clock())
        retry_after = max(1, int(math.ceil(remaining)))
        return RateLimitDecision(allowed=count <= self.max_requests, count=count, retry_after=retry_after)

    async def prune(self) -> int:
        return await self.store.prune(now=self._clock())


def build_rate_limiter(*, backend: str, redis_url: Optional[str], max_requests: int, window_seconds: int) -> RateLimiter:
    """Create the limiter selected by configuration; falls back to memory when Redis is unusable."""
    store: CounterStore
    if backend == "redis" and redis_url:
        try:
            store = RedisCounterStore.from_url(redis_url)
        except Exception as exc:
            logger.warning("Redis rate-limit store unavailable (%s); using in-memory counters", exc.__class__.__name__)
            store = InMemoryCounterStore()
    else:
        if backend == "redis":
            logger.warning("RATE_LIMIT_BACKEND=redis without REDIS_URL; using in-memory counters")
        store = InMemoryCounterStore()
    return RateLimiter(store, max_requests=max_requests, window_seconds=window_seconds)


__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitDecision",
    "RateLimiter",
    "RedisCounterStore",
    "build_rate_limiter",
]
