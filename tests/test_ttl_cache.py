# WORKFLOW: Unit tests for the TTL cache and its backends.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Memory backend expiry with an injected clock
# 2. Stats and clear
# 3. Redis backend against an in-process fake
# 4. Backend selection and failing-backend tolerance

import json

import pytest

from services.ttl_cache import MemoryCacheBackend, RedisCacheBackend, TTLCache, create_cache
from tests.conftest import FakeRedis


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_memory_entry_expires():
    clock = Clock()
    cache = TTLCache(MemoryCacheBackend(clock=clock), namespace="t")
    await cache.set("validate:8471", {"is_valid": True}, 60)

    assert await cache.get("validate:8471") == {"is_valid": True}
    clock.now += 59
    assert await cache.get("validate:8471") is not None
    clock.now += 1
    assert await cache.get("validate:8471") is None


@pytest.mark.asyncio
async def test_memory_stats_and_clear():
    clock = Clock()
    cache = TTLCache(MemoryCacheBackend(clock=clock), namespace="t")
    await cache.set("a", {"v": 1}, 10)
    await cache.set("b", {"v": 2}, 100)
    clock.now += 50

    assert await cache.stats() == {"valid": 1, "expired": 1, "total": 2}
    await cache.clear()
    assert await cache.stats() == {"valid": 0, "expired": 0, "total": 0}


@pytest.mark.asyncio
async def test_redis_backend_round_trip_and_namespace():
    redis = FakeRedis()
    cache = TTLCache(RedisCacheBackend(redis, "tariff"), namespace="tariff")
    await cache.set("taric:8471300010:ALL", {"duty_rate": 0.0}, 3600)
    redis.store["other:key"] = json.dumps({"x": 1})

    assert redis.ttls["tariff:taric:8471300010:ALL"] == 3600
    assert await cache.get("taric:8471300010:ALL") == {"duty_rate": 0.0}
    assert await cache.stats() == {"valid": 1, "expired": 0, "total": 1}

    await cache.clear()
    assert await cache.get("taric:8471300010:ALL") is None
    assert "other:key" in redis.store


class BrokenBackend:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("redis down")


@pytest.mark.asyncio
async def test_backend_failures_are_misses():
    cache = TTLCache(BrokenBackend(), namespace="t")
    await cache.set("k", {"v": 1}, 10)
    assert await cache.get("k") is None


def test_create_cache_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_cache("memcached")
    assert isinstance(create_cache("memory").backend, MemoryCacheBackend)
