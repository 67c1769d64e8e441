"""Sliding-window rate limiter: window pruning, first request, store outage policy, 429 over HTTP."""
import json

import pytest

from upload_broker.core.config import get_settings
from upload_broker.core.errors import RateLimited, RateLimitUnavailable
from upload_broker.core.rate_limit import KEY_PREFIX, MemoryKeyValueStore, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore:
    async def get(self, key):
        raise ConnectionError("kv down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("kv down")

    async def ping(self):
        raise ConnectionError("kv down")


@pytest.mark.asyncio
async def test_first_request_for_new_identity_allowed():
    limiter = SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=1, window_seconds=60)
    allowed, retry_after = await limiter.hit("ip:1.2.3.4")
    assert allowed is True
    assert retry_after == 0.0


@pytest.mark.asyncio
async def test_sixty_allowed_sixty_first_rejected():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=60, window_seconds=60, clock=clock)
    for _ in range(60):
        allowed, _ = await limiter.hit("ip:a")
        assert allowed
        clock.now += 0.5
    allowed, retry_after = await limiter.hit("ip:a")
    assert allowed is False
    assert 0 < retry_after <= 60


@pytest.mark.asyncio
async def test_rejected_request_is_not_recorded():
    clock = FakeClock()
    store = MemoryKeyValueStore()
    limiter = SlidingWindowRateLimiter(store, limit=2, window_seconds=60, clock=clock)
    await limiter.hit("ip:a")
    await limiter.hit("ip:a")
    await limiter.hit("ip:a")
    stored = json.loads(await store.get(f"{KEY_PREFIX}ip:a"))
    assert len(stored) == 2


@pytest.mark.asyncio
async def test_old_entries_drop_out_of_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=2, window_seconds=60, clock=clock)
    assert (await limiter.hit("ip:a"))[0]
    clock.now += 30
    assert (await limiter.hit("ip:a"))[0]
    assert not (await limiter.hit("ip:a"))[0]
    clock.now += 31  # first entry now older than the window
    assert (await limiter.hit("ip:a"))[0]
    assert not (await limiter.hit("ip:a"))[0]


@pytest.mark.asyncio
async def test_identities_are_independent():
    limiter = SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=1, window_seconds=60)
    assert (await limiter.hit("ip:a"))[0]
    assert (await limiter.hit("ip:b"))[0]
    assert not (await limiter.hit("ip:a"))[0]


@pytest.mark.asyncio
async def test_unreadable_record_treated_as_empty():
    store = MemoryKeyValueStore()
    await store.set(f"{KEY_PREFIX}ip:a", "not json", ttl_seconds=60)
    limiter = SlidingWindowRateLimiter(store, limit=1, window_seconds=60)
    assert (await limiter.hit("ip:a"))[0]


@pytest.mark.asyncio
async def test_memory_store_expires_keys():
    clock = FakeClock()
    store = MemoryKeyValueStore(clock=clock)
    await store.set("k", "v", ttl_seconds=10)
    assert await store.get("k") == "v"
    clock.now += 10
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_check_raises_rate_limited_with_retry_after():
    limiter = SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=1, window_seconds=60)
    await limiter.check("ip:a", fail_open=False)
    with pytest.raises(RateLimited) as exc:
        await limiter.check("ip:a", fail_open=False)
    assert int(exc.value.headers["Retry-After"]) >= 1


@pytest.mark.asyncio
async def test_store_outage_fail_closed():
    limiter = SlidingWindowRateLimiter(BrokenStore(), limit=60, window_seconds=60)
    with pytest.raises(RateLimitUnavailable):
        await limiter.check("ip:a", fail_open=False)


@pytest.mark.asyncio
async def test_store_outage_fail_open():
    limiter = SlidingWindowRateLimiter(BrokenStore(), limit=60, window_seconds=60)
    await limiter.check("ip:a", fail_open=True)


# ----- Over HTTP -----


@pytest.mark.asyncio
async def test_sixty_first_presign_put_is_429(client):
    body = {"key": "uploads/a.pdf", "contentType": "application/pdf"}
    for i in range(60):
        r = await client.post("/s3/presign-put", json=body)
        assert r.status_code == 200, i
    r = await client.post("/s3/presign-put", json=body)
    assert r.status_code == 429
    assert r.json() == {"error": "rate_limited", "message": "Rate limit exceeded"}
    assert "Retry-After" in r.headers


@pytest.mark.asyncio
async def test_limit_keyed_by_trusted_ip_header(client, limiter):
    limiter.limit = 1
    body = {"key": "k", "contentType": "text/plain"}
    r = await client.post("/s3/presign-put", json=body, headers={"cf-connecting-ip": "10.0.0.1"})
    assert r.status_code == 200
    r = await client.post("/s3/presign-put", json=body, headers={"cf-connecting-ip": "10.0.0.1"})
    assert r.status_code == 429
    r = await client.post("/s3/presign-put", json=body, headers={"cf-connecting-ip": "10.0.0.2"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_client_chosen_id_header_does_not_reset_limit(client, limiter):
    limiter.limit = 1
    body = {"key": "k", "contentType": "text/plain"}
    assert (await client.post("/s3/presign-put", json=body, headers={"x-client-id": "one"})).status_code == 200
    assert (await client.post("/s3/presign-put", json=body, headers={"x-client-id": "two"})).status_code == 429


@pytest.mark.asyncio
async def test_proxy_header_ignored_when_not_trusted(client, limiter, monkeypatch):
    monkeypatch.setattr(get_settings(), "trusted_client_ip_header", None)
    limiter.limit = 1
    body = {"key": "k", "contentType": "text/plain"}
    statuses = [
        (await client.post("/s3/presign-put", json=body, headers={"cf-connecting-ip": f"10.0.0.{i}"})).status_code
        for i in range(3)
    ]
    assert statuses == [200, 429, 429]


@pytest.mark.asyncio
async def test_issuance_fails_closed_when_store_down(client, limiter):
    limiter.store = BrokenStore()
    r = await client.post("/s3/presign-put", json={"key": "k", "contentType": "text/plain"})
    assert r.status_code == 500
    assert r.json()["error"] == "rate_limit_unavailable"


@pytest.mark.asyncio
async def test_download_fails_open_when_store_down(client, limiter, store):
    limiter.store = BrokenStore()
    store.put_object("k", scan_status="clean")
    r = await client.post("/s3/presign", json={"key": "k"})
    assert r.status_code == 200
    assert "url" in r.json()


@pytest.mark.asyncio
async def test_memory_store_sweeps_identities_that_never_return():
    store_clock = FakeClock()
    limiter_clock = FakeClock()
    store = MemoryKeyValueStore(clock=store_clock)
    limiter = SlidingWindowRateLimiter(store, limit=60, window_seconds=60, clock=limiter_clock)
    for i in range(1000):
        await limiter.hit(f"ip:10.0.{i // 256}.{i % 256}")
    assert len(store._data) == 1000
    store_clock.now += 3600
    limiter_clock.now += 3600
    await limiter.hit("ip:192.0.2.1")
    assert list(store._data) == [f"{KEY_PREFIX}ip:192.0.2.1"]


@pytest.mark.asyncio
async def test_memory_store_sweep_keeps_live_keys():
    clock = FakeClock()
    store = MemoryKeyValueStore(clock=clock)
    await store.set("old", "v", ttl_seconds=10)
    clock.now += 5
    await store.set("young", "v", ttl_seconds=100)
    clock.now += 10
    await store.set("new", "v", ttl_seconds=100)
    assert set(store._data) == {"young", "new"}
