"""Sliding-window rate limit per client identity, backed by a small key-value store.

The counter update is read-then-write, so concurrent requests from one identity
can both be admitted. This is a soft bound; a hard one needs an atomic
increment primitive in the store, not a different algorithm.
"""
import json
import logging
import time
from typing import Protocol

from upload_broker.core.config import Settings
from upload_broker.core.errors import RateLimited, RateLimitUnavailable
from upload_broker.core.metrics import record_rate_limited

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def ping(self) -> None: ...


class MemoryKeyValueStore:
    """In-process store with per-key expiry. Dev and single-instance deployments.

    Expired keys are dropped on read and by a sweep in set(), run at most once per TTL,
    so identities that never come back do not accumulate.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self._clock = clock
        self._next_sweep = 0.0

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
            self._next_sweep = now + ttl_seconds
        self._data[key] = (value, now + ttl_seconds)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._data.items() if now >= expires_at]
        for k in expired:
            del self._data[k]

    async def ping(self) -> None:
        return None

    def clear(self) -> None:
        self._data.clear()


class RedisKeyValueStore:
    """Shared store for multi-instance deployments (redis.asyncio)."""

    def __init__(self, url: str) -> None:
        import redis.asyncio as redis_async

        self._client = redis_async.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()


def create_store(settings: Settings) -> KeyValueStore:
    if settings.rate_limit_backend == "redis":
        return RedisKeyValueStore(settings.redis_url)
    return MemoryKeyValueStore()


def _load_timestamps(raw: str | None) -> list[float]:
    """Stored value is a JSON list of epoch seconds. Anything else counts as empty."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable rate limit record")
        return []
    if not isinstance(data, list):
        return []
    return [float(t) for t in data if isinstance(t, (int, float))]


class SlidingWindowRateLimiter:
    """Allow at most `limit` requests per `window_seconds` for each identity."""

    def __init__(self, store: KeyValueStore, limit: int, window_seconds: int, clock=time.time) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    async def hit(self, identity: str) -> tuple[bool, float]:
        """Record a request if allowed. Returns (allowed, retry_after_seconds)."""
        key = f"{KEY_PREFIX}{identity}"
        now = self._clock()
        cutoff = now - self.window_seconds
        timestamps = [t for t in _load_timestamps(await self.store.get(key)) if t > cutoff]
        if len(timestamps) >= self.limit:
            retry_after = max(0.0, min(timestamps) + self.window_seconds - now)
            return False, retry_after
        timestamps.append(now)
        await self.store.set(key, json.dumps(timestamps), ttl_seconds=self.window_seconds * 2)
        return True, 0.0

    async def check(self, identity: str, fail_open: bool) -> None:
        """Raise RateLimited when over the limit.

        When the store itself fails, fail_open=True lets the request through with a
        warning; fail_open=False rejects it with RateLimitUnavailable.
        """
        try:
            allowed, retry_after = await self.hit(identity)
        except Exception:
            if fail_open:
                logger.warning("Rate limit store unavailable; allowing %s", identity, exc_info=True)
                return
            logger.exception("Rate limit store unavailable; rejecting %s", identity)
            raise RateLimitUnavailable("Rate limiting is temporarily unavailable")
        if not allowed:
            record_rate_limited()
            logger.info("Rate limit exceeded for %s", identity)
            raise RateLimited(
                "Rate limit exceeded",
                headers={"Retry-After": str(max(1, int(retry_after + 0.999)))},
            )
