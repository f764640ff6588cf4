"""Fixed-window rate limiter and its counter stores."""
from __future__ import annotations

import pytest

from rate_limit import InMemoryCounterStore, RateLimiter, RedisCounterStore, build_rate_limiter




class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio
async def test_sixty_first_request_in_window_is_rejected_then_window_rolls_over():
    clock = _Clock()
    limiter = RateLimiter(InMemoryCounterStore(), max_requests=60, window_seconds=60, clock=clock)

    for _ in range(60):
        assert (await limiter.hit("10.0.0.1")).allowed
        clock.now += 0.5
    blocked = await limiter.hit("10.0.0.1")
    assert not blocked.allowed
    assert 1 <= blocked.retry_after <= 60

    clock.now = 1000.0 + 60
    assert (await limiter.hit("10.0.0.1")).allowed


@pytest.mark.anyio
async def test_keys_are_counted_independently():
    clock = _Clock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    assert (await limiter.hit("a")).allowed
    assert not (await limiter.hit("a")).allowed
    assert (await limiter.hit("b")).allowed


@pytest.mark.anyio
async def test_retry_after_reports_remaining_window():
    clock = _Clock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    await limiter.hit("a")
    clock.now += 45
    decision = await limiter.hit("a")
    assert decision.retry_after == 15


@pytest.mark.anyio
async def test_prune_evicts_expired_windows_only():
    clock = _Clock()
    store = InMemoryCounterStore()
    limiter = RateLimiter(store, window_seconds=60, clock=clock)
    await limiter.hit("old")
    clock.now += 30
    await limiter.hit("fresh")
    clock.now += 31
    assert await limiter.prune() == 1
    assert len(store) == 1


@pytest.mark.anyio
async def test_lazy_sweep_runs_during_hits():
    clock = _Clock()
    store = InMemoryCounterStore(sweep_every=3)
    limiter = RateLimiter(store, window_seconds=10, clock=clock)
    await limiter.hit("a")
    await limiter.hit("b")
    clock.now += 11
    await limiter.hit("c")
    assert len(store) == 1


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def ttl(self, key):
        return self.ttls.get(key, -1)


@pytest.mark.anyio
async def test_redis_store_sets_expiry_on_first_hit():
    client = _FakeRedis()
    limiter = RateLimiter(RedisCounterStore(client), max_requests=2, window_seconds=60)
    assert (await limiter.hit("1.2.3.4")).allowed
    assert (await limiter.hit("1.2.3.4")).allowed
    decision = await limiter.hit("1.2.3.4")
    assert not decision.allowed
    assert decision.retry_after == 60
    assert client.ttls == {"campusboard:rl:1.2.3.4": 60}


@pytest.mark.anyio
async def test_redis_store_restores_lost_expiry():
    client = _FakeRedis()
    client.values["campusboard:rl:k"] = 5
    store = RedisCounterStore(client)
    count, remaining = await store.increment("k", window_seconds=30, now=0.0)
    assert count == 6
    assert remaining == 30
    assert client.ttls["campusboard:rl:k"] == 30


def test_build_rate_limiter_falls_back_to_memory_without_url():
    limiter = build_rate_limiter(backend="redis", redis_url=None, max_requests=5, window_seconds=10)
    assert isinstance(limiter.store, InMemoryCounterStore)
    assert limiter.max_requests == 5
