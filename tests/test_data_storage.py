import json
from unittest.mock import AsyncMock, Mock

import pytest
import redis.asyncio as redis

from data_pipeline.data_storage import InMemoryTimedCache, RedisTimedCache, build_cache


@pytest.fixture
def clock():
    return Mock(return_value=100.0)


@pytest.mark.asyncio
async def test_in_memory_cache_expires_entries(clock):
    cache = InMemoryTimedCache(default_ttl_seconds=60, clock=clock)
    await cache.set("delay:12779", {"delay_minutes": 5})
    assert await cache.get("delay:12779") == {"delay_minutes": 5}
    clock.return_value = 159.0
    assert await cache.get("delay:12779") is not None
    clock.return_value = 160.0
    assert await cache.get("delay:12779") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_in_memory_cache_per_entry_ttl(clock):
    cache = InMemoryTimedCache(default_ttl_seconds=60, clock=clock)
    await cache.set("short", 1, ttl_seconds=5)
    clock.return_value = 106.0
    assert await cache.get("short") is None


@pytest.mark.asyncio
async def test_in_memory_cache_evicts_oldest(clock):
    cache = InMemoryTimedCache(max_entries=2, clock=clock)
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.set("c", 3)
    assert await cache.get("a") is None
    assert await cache.get("c") == 3
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_in_memory_cache_delete(clock):
    cache = InMemoryTimedCache(clock=clock)
    await cache.set("a", 1)
    await cache.delete("a")
    await cache.delete("missing")
    assert await cache.get("a") is None


@pytest.mark.asyncio
async def test_redis_cache_round_trips_json():
    client = Mock()
    client.setex = AsyncMock()
    client.get = AsyncMock(return_value=json.dumps({"delay_minutes": 7}))
    cache = RedisTimedCache(client=client, prefix="test:")
    await cache.set("delay:12779", {"delay_minutes": 7}, ttl_seconds=90.5)
    client.setex.assert_awaited_once_with("test:delay:12779", 90, json.dumps({"delay_minutes": 7}))
    assert await cache.get("delay:12779") == {"delay_minutes": 7}
    client.get.assert_awaited_once_with("test:delay:12779")


@pytest.mark.asyncio
async def test_redis_errors_are_cache_misses():
    client = Mock()
    client.get = AsyncMock(side_effect=redis.ConnectionError("down"))
    client.setex = AsyncMock(side_effect=redis.ConnectionError("down"))
    cache = RedisTimedCache(client=client)
    assert await cache.get("delay:12779") is None
    await cache.set("delay:12779", {"delay_minutes": 1})


@pytest.mark.asyncio
async def test_redis_undecodable_entry_is_a_miss():
    client = Mock()
    client.get = AsyncMock(return_value="{not json")
    assert await RedisTimedCache(client=client).get("x") is None


def test_build_cache_selects_backend():
    assert isinstance(build_cache(None), InMemoryTimedCache)
    assert isinstance(build_cache("redis://localhost:6379/0"), RedisTimedCache)
