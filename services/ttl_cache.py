# WORKFLOW: Process-wide TTL cache shared by every engine component.
# Used by: services/taric_engine.py, services/hierarchy.py, services/translation.py
# Components:
# 1. CacheEntry - key/value/expires_at record held by the memory backend
# 2. MemoryCacheBackend - dict-backed store, expired entries evicted on read
# 3. RedisCacheBackend - redis.asyncio store using SET ... EX ttl
# 4. TTLCache - namespaced facade (get/set/delete/clear/stats) over a backend
# 5. get_cache() - lazy singleton selected by settings.cache_backend
#
# Cache flow: key -> backend.get -> miss | value; callers report from_cache themselves.
# Values are JSON-compatible dicts; models are dumped before set and validated after get.

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from redis.asyncio import Redis

from core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Dict[str, Any]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryCacheBackend:
    """In-process dict backend. Nothing survives a restart."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def stats(self) -> Dict[str, int]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        total = len(self._entries)
        return {"valid": total - expired, "expired": expired, "total": total}


class RedisCacheBackend:
    """Redis backend; expiry is delegated to Redis so nothing is ever reported as expired."""

    def __init__(self, client: Redis, namespace: str):
        self.client = client
        self.namespace = namespace

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        await self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def clear(self) -> None:
        async for key in self.client.scan_iter(match=f"{self.namespace}:*"):
            await self.client.delete(key)

    async def stats(self) -> Dict[str, int]:
        total = 0
        async for _ in self.client.scan_iter(match=f"{self.namespace}:*"):
            total += 1
        return {"valid": total, "expired": 0, "total": total}


class TTLCache:
    """Namespaced TTL cache. Keys passed in are prefixed with the namespace."""

    def __init__(self, backend, namespace: str = "tariff"):
        self.backend = backend
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.backend.get(self._key(key))
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self.backend.set(self._key(key), value, ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        await self.backend.delete(self._key(key))

    async def clear(self) -> None:
        await self.backend.clear()
        logger.info(f"Cache namespace '{self.namespace}' cleared")

    async def stats(self) -> Dict[str, int]:
        return await self.backend.stats()


# Lazy-loaded process-wide cache
_cache: Optional[TTLCache] = None


def create_cache(backend_name: Optional[str] = None) -> TTLCache:
    backend_name = backend_name or settings.cache_backend
    if backend_name == "redis":
        client = Redis.from_url(settings.redis_url, decode_responses=True)
        backend = RedisCacheBackend(client, settings.cache_key_prefix)
    elif backend_name == "memory":
        backend = MemoryCacheBackend()
    else:
        raise ValueError(f"Unknown cache backend: {backend_name}")
    logger.info(f"Using {backend_name} cache backend")
    return TTLCache(backend, namespace=settings.cache_key_prefix)


def get_cache() -> TTLCache:
    """Get the process-wide cache (lazy-loaded)."""
    global _cache
    if _cache is None:
        _cache = create_cache()
    return _cache
