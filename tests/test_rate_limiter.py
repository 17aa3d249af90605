"""Tests for fixed-window rate limiting."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

import redis

from app.infra.rate_limiter import (
    InMemoryRateLimitStore,
    RateLimiter,
    RedisRateLimitStore,
    parse_window,
)
from app.models.tool import RateLimitPolicy


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestParseWindow:

    @pytest.mark.parametrize("window,expected", [
        ("1m", 60_000),
        ("5m", 300_000),
        ("15m", 900_000),
        ("1h", 3_600_000),
        ("1d", 86_400_000),
        ("2h", 7_200_000),
    ])
    def test_known_windows(self, window, expected):
        assert parse_window(window) == expected

    @pytest.mark.parametrize("window", [None, "", "forever", "0m", "10s"])
    def test_unknown_windows_default_to_one_hour(self, window):
        assert parse_window(window) == 3_600_000


class TestRateLimiter:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(store=InMemoryRateLimitStore(), clock=clock)

    @pytest.mark.asyncio
    async def test_no_policy_is_unlimited_and_stateless(self, limiter):
        for _ in range(100):
            decision = await limiter.check("acme", "search", None)
            assert decision.allowed

        assert len(limiter.store) == 0

    @pytest.mark.asyncio
    async def test_rejects_call_over_quota(self, limiter, clock):
        policy = RateLimitPolicy(requests=3, window="1m")

        for expected in (1, 2, 3):
            decision = await limiter.check("acme", "search", policy)
            assert decision.allowed
            assert decision.count == expected

        clock.now += 20_000
        decision = await limiter.check("acme", "search", policy)

        assert not decision.allowed
        assert decision.retry_after_seconds == 40

    @pytest.mark.asyncio
    async def test_new_window_resets_count(self, limiter, clock):
        policy = RateLimitPolicy(requests=3, window="1m")
        for _ in range(4):
            await limiter.check("acme", "search", policy)

        clock.now += 60_001
        decision = await limiter.check("acme", "search", policy)

        assert decision.allowed
        assert decision.count == 1

    @pytest.mark.asyncio
    async def test_retry_after_is_at_least_one_second(self, limiter, clock):
        policy = RateLimitPolicy(requests=1, window="1m")
        await limiter.check("acme", "search", policy)

        clock.now += 59_900
        decision = await limiter.check("acme", "search", policy)

        assert decision.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_windows_are_per_tenant_and_tool(self, limiter):
        policy = RateLimitPolicy(requests=1, window="1h")

        assert (await limiter.check("acme", "search", policy)).allowed
        assert (await limiter.check("acme", "book", policy)).allowed
        assert (await limiter.check("globex", "search", policy)).allowed
        assert not (await limiter.check("acme", "search", policy)).allowed

    @pytest.mark.asyncio
    async def test_concurrent_checks_count_every_call(self, limiter, clock):
        policy = RateLimitPolicy(requests=3, window="1m")

        decisions = await asyncio.gather(*(limiter.check("acme", "search", policy) for _ in range(10)))

        assert sum(decision.allowed for decision in decisions) == 3
        assert sorted(decision.count for decision in decisions) == list(range(1, 11))
        count, _ = await limiter.store.hit(RateLimiter.key_for("acme", "search"), 60_000, clock.now)
        assert count == 11

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_windows(self, limiter, clock):
        policy = RateLimitPolicy(requests=5, window="1m")
        await limiter.check("acme", "search", policy)
        await limiter.check("acme", "book", policy)

        clock.now += 120_000
        removed = await limiter.sweep()

        assert removed == 2
        assert len(limiter.store) == 0

    def test_key_format(self):
        assert RateLimiter.key_for("acme", "search") == "ratelimit:tool:acme:search"


class TestRedisRateLimitStore:

    def _store(self, script):
        client = MagicMock()
        client.register_script.return_value = script
        client.aclose = AsyncMock()
        return RedisRateLimitStore("redis://localhost:6379/0", client=client)

    @pytest.mark.asyncio
    async def test_hit_uses_script_result(self):
        store = self._store(AsyncMock(return_value=[2, 45_000]))

        count, reset_at = await store.hit("ratelimit:tool:acme:search", 60_000, 1_000)

        assert count == 2
        assert reset_at == 46_000

    @pytest.mark.asyncio
    async def test_falls_back_to_memory_when_redis_fails(self):
        store = self._store(AsyncMock(side_effect=redis.ConnectionError("down")))

        first = await store.hit("k", 60_000, 1_000)
        second = await store.hit("k", 60_000, 2_000)

        assert first == (1, 61_000)
        assert second == (2, 61_000)

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        store = self._store(AsyncMock())

        await store.close()

        store._client.aclose.assert_awaited_once()
