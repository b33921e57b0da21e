# careerhub/app/services/cache.py
"""
Best-effort response cache.

Services talk to a `Cache`, which wraps one backend (in-process memory or Redis)
and turns every backend failure into a logged miss or no-op. The cache is never
a correctness dependency: with no backend at all, reads fall through to the
database.
"""
import json
import logging
import time
from typing import Any, Optional, Tuple

import redis.asyncio as aioredis
from cachetools import TLRUCache

from ..config import Settings

logger = logging.getLogger(__name__)


class CacheBackend:
    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    async def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError


def _expires_at(key: str, entry: Tuple[int, str], now: float) -> float:
    return now + entry[0]


class MemoryCache(CacheBackend):
    """
    In-process cache on a `cachetools.TLRUCache`. Each entry carries its own TTL;
    expired entries are purged on every write. Values are stored as JSON to
    mirror a remote store.
    """

    def __init__(self, maxsize: int = 10000, clock=time.monotonic):
        self._cache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        return json.loads(entry[1])

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._cache[key] = (ttl, json.dumps(value, default=str))

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in list(self._cache.keys()) if k.startswith(prefix)]
        for k in doomed:
            self._cache.pop(k, None)
        return len(doomed)

    def keys(self):
        self._cache.expire()
        return list(self._cache.keys())


class RedisCache(CacheBackend):
    def __init__(self, client: "aioredis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True, socket_connect_timeout=2))

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self.client.set(key, json.dumps(value, default=str), ex=ttl)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k async for k in self.client.scan_iter(match=f"{prefix}*")]
        if not keys:
            return 0
        return await self.client.delete(*keys)


class Cache:
    def __init__(self, backend: Optional[CacheBackend] = None):
        self.backend = backend

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def get(self, key: str) -> Optional[Any]:
        if self.backend is None:
            return None
        try:
            value = await self.backend.get(key)
        except Exception as e:
            logger.warning("cache get failed for %s: %s", key, e)
            return None
        if value is not None:
            logger.debug("cache hit %s", key)
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.set(key, value, ttl)
        except Exception as e:
            logger.warning("cache set failed for %s: %s", key, e)

    async def invalidate(self, *prefixes: str) -> None:
        if self.backend is None:
            return
        for prefix in prefixes:
            try:
                await self.backend.delete_prefix(prefix)
            except Exception as e:
                logger.warning("cache invalidation failed for %s*: %s", prefix, e)


def build_cache(settings: Settings) -> Cache:
    if settings.cache_backend == "redis":
        logger.info("using redis cache at %s", settings.redis_url)
        return Cache(RedisCache.from_url(settings.redis_url))
    if settings.cache_backend == "none":
        logger.info("response cache disabled")
        return Cache(None)
    return Cache(MemoryCache())


# ---------- key builders ----------
# Every key for a scope shares that scope's prefix so one delete_prefix covers it.

def _part(value: Any) -> str:
    return "all" if value is None or value == "" else str(value)


def notifications_prefix(user_id: int) -> str:
    return f"notifications:{user_id}:"


def notification_list_key(user_id: int, page: int, limit: int, status=None, type_=None) -> str:
    return f"{notifications_prefix(user_id)}list:{page}:{limit}:{_part(status)}:{_part(type_)}"


def notification_count_key(user_id: int) -> str:
    return f"{notifications_prefix(user_id)}count"


JOBS_LIST_PREFIX = "jobs:list:"
COURSES_LIST_PREFIX = "courses:list:"
CANDIDATES_PREFIX = "candidates:"


def jobs_list_key(status, page: int, limit: int) -> str:
    return f"{JOBS_LIST_PREFIX}{_part(status)}:{page}:{limit}"


def job_detail_key(job_id: int) -> str:
    # trailing separator so jobs:detail:1: never matches job 10
    return f"jobs:detail:{job_id}:"


def courses_list_key(page: int, limit: int) -> str:
    return f"{COURSES_LIST_PREFIX}{page}:{limit}"


def candidates_prefix(employer_id: int) -> str:
    return f"{CANDIDATES_PREFIX}{employer_id}:"


def candidates_key(employer_id: int, mode: str, *params: Any) -> str:
    return f"{candidates_prefix(employer_id)}{mode}:" + ":".join(_part(p) for p in params)
