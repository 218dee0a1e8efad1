"""
Handles short-lived caching of delay and report lookups.

Exposes a single TimedCache capability with TTL semantics. The in-memory
implementation serves single-process deployments and tests; the Redis
implementation shares entries between processes. The cache is advisory:
a miss, an expired entry or a backend error simply means "fetch again".
"""
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

import redis.asyncio as redis # Async Redis client

from .utils import DEFAULT_CACHE_TTL_SECONDS, get_env_var

logger = logging.getLogger(__name__)

REDIS_URL = get_env_var("REDIS_URL", "")

_redis_pool:Optional[redis.Redis] = None

async def get_redis_client(url:Optional[str] = None) -> redis.Redis:
    """Initializes and returns the async Redis client"""
    global _redis_pool
    if _redis_pool is None:
        redis_url = url or REDIS_URL
        logger.info(f"Initializing Redis client for URL: {redis_url}")
        if not redis_url:
            raise ValueError("REDIS_URL environment variable not set")
        try:
            _redis_pool = redis.from_url(redis_url, decode_responses=True, max_connections=20)
            await _redis_pool.ping()
            logger.info("Redis client initialized and connection verified")
        except Exception as e:
            logger.error(f"Failed to initialize Redis client: {e}", exc_info=True)
            _redis_pool = None
            raise
    return _redis_pool

async def close_redis_client():
    """Close the shared Redis client"""
    global _redis_pool
    if _redis_pool:
        logger.info("Closing Redis client connections...")
        await _redis_pool.aclose()
        _redis_pool = None
        logger.info("Redis client connections closed")


class TimedCache:
    """Key/value cache whose entries expire after a time-to-live."""

    def __init__(self, default_ttl_seconds:float = DEFAULT_CACHE_TTL_SECONDS):
        self.default_ttl_seconds = default_ttl_seconds

    async def get(self, key:str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key:str, value:Any, ttl_seconds:Optional[float] = None) -> None:
        raise NotImplementedError

    async def delete(self, key:str) -> None:
        raise NotImplementedError


class InMemoryTimedCache(TimedCache):
    """Process-local TTL cache, bounded to `max_entries` (oldest evicted first)"""

    def __init__(self, default_ttl_seconds:float = DEFAULT_CACHE_TTL_SECONDS, max_entries:int = 1024,
                 clock:Callable[[], float] = time.monotonic):
        super().__init__(default_ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries:"OrderedDict[str, Tuple[float, Any]]" = OrderedDict()

    async def get(self, key:str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key:str, value:Any, ttl_seconds:Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (self._clock() + ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key:str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTimedCache(TimedCache):
    """TTL cache backed by Redis; values must be JSON serializable"""

    def __init__(self, client:Optional[redis.Redis] = None, url:Optional[str] = None, prefix:str = "railgate:",
                 default_ttl_seconds:float = DEFAULT_CACHE_TTL_SECONDS):
        super().__init__(default_ttl_seconds)
        self._client = client
        self.url = url
        self.prefix = prefix

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis_client(self.url)
        return self._client

    async def get(self, key:str) -> Optional[Any]:
        try:
            client = await self._get_client()
            raw = await client.get(self.prefix + key)
        except (redis.RedisError, ValueError, OSError) as e:
            logger.warning(f"Redis cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable cache entry for {key}")
            return None

    async def set(self, key:str, value:Any, ttl_seconds:Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            client = await self._get_client()
            await client.setex(self.prefix + key, max(1, int(ttl)), json.dumps(value, default=str))
        except (redis.RedisError, ValueError, OSError, TypeError) as e:
            logger.warning(f"Redis cache write failed for {key}: {e}")

    async def delete(self, key:str) -> None:
        try:
            client = await self._get_client()
            await client.delete(self.prefix + key)
        except (redis.RedisError, ValueError, OSError) as e:
            logger.warning(f"Redis cache delete failed for {key}: {e}")


def build_cache(redis_url:Optional[str] = None, default_ttl_seconds:float = DEFAULT_CACHE_TTL_SECONDS) -> TimedCache:
    """Redis-backed cache when a URL is configured, otherwise in-memory"""
    if redis_url:
        return RedisTimedCache(url=redis_url, default_ttl_seconds=default_ttl_seconds)
    return InMemoryTimedCache(default_ttl_seconds=default_ttl_seconds)

