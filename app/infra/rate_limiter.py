"""Fixed-window rate limiting per (tenant, tool).

Counters live behind ``RateLimitStore``. The in-memory store is process-local
and is lost on restart; the Redis store shares windows across workers and
falls back to memory if Redis becomes unavailable.
"""

import asyncio
import logging
import math
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis
import redis.asyncio as redis_async

from app.infra.config import config
from app.models.tool import RateLimitPolicy

logger = logging.getLogger(__name__)

WINDOW_MS: Dict[str, int] = {
    "1m": 60_000,
    "5m": 300_000,
    "15m": 900_000,
    "1h": 3_600_000,
    "1d": 86_400_000,
}
DEFAULT_WINDOW_MS = 3_600_000

_UNIT_MS = {"m": 60_000, "h": 3_600_000, "d": 86_400_000}
_WINDOW_RE = re.compile(r"^(\d+)([mhd])$")


def parse_window(window: Optional[str]) -> int:
    """Window string to milliseconds. Unknown units fall back to one hour."""
    if window in WINDOW_MS:
        return WINDOW_MS[window]
    match = _WINDOW_RE.match(window or "")
    if match and int(match.group(1)) > 0:
        return int(match.group(1)) * _UNIT_MS[match.group(2)]
    return DEFAULT_WINDOW_MS


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int = 0
    limit: Optional[int] = None
    reset_at_ms: Optional[int] = None
    retry_after_seconds: Optional[int] = None


class RateLimitStore(ABC):
    """Atomic increment-and-read of a fixed window counter."""

    @abstractmethod
    async def hit(self, key: str, window_ms: int, now: int) -> Tuple[int, int]:
        """Count one call against ``key``. Returns (count, window_reset_at_ms)."""

    @abstractmethod
    async def sweep(self, now: int) -> int:
        """Drop expired windows. Returns how many were removed."""

    async def close(self) -> None:
        return None


@dataclass
class _Window:
    count: int
    reset_at_ms: int


class InMemoryRateLimitStore(RateLimitStore):

    def __init__(self):
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    async def hit(self, key: str, window_ms: int, now: int) -> Tuple[int, int]:
        with self._lock:
            state = self._windows.get(key)
            if state is None or now > state.reset_at_ms:
                state = _Window(count=1, reset_at_ms=now + window_ms)
                self._windows[key] = state
            else:
                state.count += 1
            return state.count, state.reset_at_ms

    async def sweep(self, now: int) -> int:
        with self._lock:
            expired = [key for key, state in self._windows.items() if now > state.reset_at_ms]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


# INCR and PEXPIRE run as one script so every counter key carries a TTL.
_HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed windows. Expiry is handled by Redis key TTLs."""

    def __init__(self, redis_url: str, client: Optional[redis_async.Redis] = None):
        self._client = client or redis_async.Redis.from_url(redis_url, decode_responses=True)
        self._script = self._client.register_script(_HIT_SCRIPT)
        self._fallback = InMemoryRateLimitStore()

    async def hit(self, key: str, window_ms: int, now: int) -> Tuple[int, int]:
        try:
            count, ttl = await self._script(keys=[key], args=[window_ms])
        except redis.RedisError as e:
            # Redis outage degrades to per-process windows
            logger.warning(f"Redis rate limit store unavailable, using memory: {e}")
            return await self._fallback.hit(key, window_ms, now)
        return int(count), now + int(ttl)

    async def sweep(self, now: int) -> int:
        return await self._fallback.sweep(now)

    async def close(self) -> None:
        await self._client.aclose()


class RateLimiter:
    """Applies a tool's rate-limit policy."""

    def __init__(self, store: Optional[RateLimitStore] = None, clock: Callable[[], int] = now_ms):
        self.store = store or InMemoryRateLimitStore()
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    @staticmethod
    def key_for(tenant_id: str, tool_name: str) -> str:
        return f"ratelimit:tool:{tenant_id}:{tool_name}"

    async def check(
        self,
        tenant_id: str,
        tool_name: str,
        policy: Optional[RateLimitPolicy],
    ) -> RateLimitDecision:
        """
        Count a call and decide whether it may proceed.

        Tools without a policy are never throttled and do not create state.
        """
        if policy is None:
            return RateLimitDecision(allowed=True)

        now = self._clock()
        count, reset_at_ms = await self.store.hit(
            self.key_for(tenant_id, tool_name),
            parse_window(policy.window),
            now,
        )

        if count > policy.requests:
            retry_after = max(1, math.ceil((reset_at_ms - now) / 1000))
            return RateLimitDecision(
                allowed=False,
                count=count,
                limit=policy.requests,
                reset_at_ms=reset_at_ms,
                retry_after_seconds=retry_after,
            )

        return RateLimitDecision(allowed=True, count=count, limit=policy.requests, reset_at_ms=reset_at_ms)

    async def sweep(self) -> int:
        removed = await self.store.sweep(self._clock())
        if removed:
            logger.debug(f"Swept {removed} expired rate limit windows")
        return removed

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Rate limit sweep failed: {e}", exc_info=True)

    def start_sweeper(self, interval_seconds: float = 300) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds))
        return self._sweeper

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.store.close()


def build_rate_limiter() -> RateLimiter:
    """Create the limiter selected by RATE_LIMIT_BACKEND."""
    if config.RATE_LIMIT_BACKEND == "redis":
        logger.info("Using Redis rate limit store")
        return RateLimiter(store=RedisRateLimitStore(config.REDIS_URL))
    return RateLimiter(store=InMemoryRateLimitStore())
