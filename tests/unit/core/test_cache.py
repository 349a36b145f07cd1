#!/usr/bin/env python3
"""
Unit Tests for Cache Utilities
Tests for permsearch/core/cache.py
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from permsearch.core.cache import (
    CacheManager,
    RedisCache,
    _FENCE_SCRIPT,
    _RELEASE_SCRIPT,
    get_cache_backend,
)


@pytest.fixture
def cache_manager():
    """Create a fresh cache manager for each test"""
    return CacheManager()


class TestCacheManager:
    """Test CacheManager basics"""

    @pytest.mark.asyncio
    async def test_set_and_get_cache(self, cache_manager):
        """Test basic set and get operations"""
        await cache_manager.set("key", {"data": "value"})
        assert await cache_manager.get("key") == {"data": "value"}

    @pytest.mark.asyncio
    async def test_get_nonexistent_key_returns_none(self, cache_manager):
        """Test getting a nonexistent key returns None"""
        assert await cache_manager.get("nonexistent_key") is None

    @pytest.mark.asyncio
    async def test_cache_expiration(self, cache_manager):
        """Test cache entries expire after TTL"""
        await cache_manager.set("expiring", "value", ttl=1)
        assert await cache_manager.get("expiring") == "value"

        await asyncio.sleep(1.1)

        assert await cache_manager.get("expiring") is None

    @pytest.mark.asyncio
    async def test_delete_existing_key(self, cache_manager):
        """Test deleting an existing entry"""
        await cache_manager.set("key", "value")
        assert await cache_manager.delete("key") is True
        assert await cache_manager.get("key") is None

    @pytest.mark.asyncio
    async def test_delete_nonexistent_key(self, cache_manager):
        """Test deleting a missing key returns False"""
        assert await cache_manager.delete("missing") is False

    @pytest.mark.asyncio
    async def test_clear_cache(self, cache_manager):
        """Test clearing all entries"""
        await cache_manager.set("a", 1)
        await cache_manager.set("b", 2)

        assert await cache_manager.clear() == 2
        assert await cache_manager.get("a") is None

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, cache_manager):
        """Test expired entries are swept"""
        await cache_manager.set("short", 1, ttl=0)
        await cache_manager.set("long", 2, ttl=60)
        await asyncio.sleep(0.01)

        assert await cache_manager.cleanup_expired() == 1
        stats = await cache_manager.get_stats()
        assert stats["total_entries"] == 1
        assert stats["backend"] == "memory"


class TestGenerationProtocol:
    """Test conditional write-back against fences and generations"""

    @pytest.mark.asyncio
    async def test_miss_then_write_back(self, cache_manager):
        """Test a reader can populate an untouched key"""
        lookup = await cache_manager.lookup("k")
        assert lookup.hit is False
        assert lookup.fenced is False

        stored = await cache_manager.set_if_generation("k", [1], lookup.generation, ttl=60)

        assert stored is True
        hit = await cache_manager.lookup("k")
        assert hit.hit is True
        assert hit.value == [1]

    @pytest.mark.asyncio
    async def test_fenced_key_never_returns_value(self, cache_manager):
        """Test lookups during a fence miss and report the fence"""
        await cache_manager.set("k", "stale")
        await cache_manager.fence(["k"])

        lookup = await cache_manager.lookup("k")

        assert lookup.hit is False
        assert lookup.fenced is True

    @pytest.mark.asyncio
    async def test_write_back_rejected_while_fenced(self, cache_manager):
        """Test a reader cannot populate a fenced key"""
        await cache_manager.fence(["k"])
        lookup = await cache_manager.lookup("k")

        assert await cache_manager.set_if_generation("k", "v", lookup.generation, 60) is False

    @pytest.mark.asyncio
    async def test_write_back_rejected_after_invalidation(self, cache_manager):
        """Test a read that started before a fence cannot write back after release"""
        lookup = await cache_manager.lookup("k")

        await cache_manager.fence(["k"])
        await cache_manager.release(["k"])

        assert await cache_manager.set_if_generation("k", "stale", lookup.generation, 60) is False
        assert await cache_manager.get("k") is None

    @pytest.mark.asyncio
    async def test_release_drops_values_written_during_fence(self, cache_manager):
        """Test an unconditional write during the fence does not survive release"""
        await cache_manager.fence(["k"])
        await cache_manager.set("k", "written-during-fence")
        await cache_manager.release(["k"])

        assert await cache_manager.get("k") is None

    @pytest.mark.asyncio
    async def test_nested_fences(self, cache_manager):
        """Test a key stays fenced until every fence is released"""
        await cache_manager.fence(["k"])
        await cache_manager.fence(["k"])
        await cache_manager.release(["k"])

        assert (await cache_manager.lookup("k")).fenced is True

        await cache_manager.release(["k"])
        assert (await cache_manager.lookup("k")).fenced is False

    @pytest.mark.asyncio
    async def test_delete_advances_generation(self, cache_manager):
        """Test delete invalidates in-flight read-throughs"""
        lookup = await cache_manager.lookup("k")
        await cache_manager.delete("k")

        assert await cache_manager.set_if_generation("k", "v", lookup.generation, 60) is False

    @pytest.mark.asyncio
    async def test_invalidate_is_fence_plus_release(self, cache_manager):
        """Test invalidate drops the value and leaves the key unfenced"""
        await cache_manager.set("k", "v")
        await cache_manager.invalidate(["k"])

        lookup = await cache_manager.lookup("k")
        assert lookup.hit is False
        assert lookup.fenced is False


class TestBoundedState:
    """Test the in-memory cache does not grow with every key it has seen"""

    @pytest.mark.asyncio
    async def test_invalidated_keys_leave_no_generations(self, cache_manager):
        for i in range(10000):
            await cache_manager.invalidate([f"acl:u:t1:U{i}"])

        stats = await cache_manager.get_stats()
        assert stats["tracked_generations"] == 0
        assert stats["fenced_keys"] == 0
        assert stats["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_fenced_key_keeps_generation_until_released(self, cache_manager):
        await cache_manager.fence(["k"])
        assert (await cache_manager.get_stats())["tracked_generations"] == 1

        await cache_manager.release(["k"])
        assert (await cache_manager.get_stats())["tracked_generations"] == 0

    @pytest.mark.asyncio
    async def test_stale_reader_rejected_after_generation_dropped(self, cache_manager):
        """Test a pre-fence generation stays stale once the key is forgotten"""
        await cache_manager.invalidate(["k"])
        lookup = await cache_manager.lookup("k")

        await cache_manager.fence(["k"])
        await cache_manager.release(["k"])

        assert await cache_manager.set_if_generation("k", "stale", lookup.generation, 60) is False
        fresh = await cache_manager.lookup("k")
        assert await cache_manager.set_if_generation("k", "fresh", fresh.generation, 60) is True
        assert await cache_manager.get("k") == "fresh"

    @pytest.mark.asyncio
    async def test_expired_entries_swept_on_miss(self):
        cache = CacheManager(sweep_interval=0)
        await cache.set("a", 1, ttl=0)
        await cache.set("b", 2, ttl=0)
        await asyncio.sleep(0.01)

        assert await cache.get("other") is None

        assert (await cache.get_stats())["total_entries"] == 0


class TestRedisCache:
    """Test RedisCache against a mocked client"""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.eval = AsyncMock()
        return client

    @pytest.fixture
    def redis_cache(self, redis_client):
        return RedisCache(client=redis_client, fence_ttl=30)

    def test_triple_shares_hash_tag(self):
        """Test value, generation and fence keys land in one cluster slot"""
        keys = RedisCache._triple("acl:t1:user:u1:resources")
        assert keys == [
            "{acl:t1:user:u1:resources}:v",
            "{acl:t1:user:u1:resources}:gen",
            "{acl:t1:user:u1:resources}:fence",
        ]

    @pytest.mark.asyncio
    async def test_lookup_hit_decodes_json(self, redis_cache, redis_client):
        """Test a stored payload is decoded"""
        redis_client.eval.return_value = [0, 4, json.dumps(["u1", "u2"])]

        lookup = await redis_cache.lookup("k")

        assert lookup.hit is True
        assert lookup.value == ["u1", "u2"]
        assert lookup.generation == 4

    @pytest.mark.asyncio
    async def test_lookup_miss(self, redis_cache, redis_client):
        """Test a missing payload reports the generation"""
        redis_client.eval.return_value = [0, 2, None]

        lookup = await redis_cache.lookup("k")

        assert lookup.hit is False
        assert lookup.fenced is False
        assert lookup.generation == 2

    @pytest.mark.asyncio
    async def test_lookup_fenced(self, redis_cache, redis_client):
        """Test a fenced key never returns a value"""
        redis_client.eval.return_value = [1, 3, None]

        lookup = await redis_cache.lookup("k")

        assert lookup.hit is False
        assert lookup.fenced is True

    @pytest.mark.asyncio
    async def test_set_if_generation_passes_expected_generation(self, redis_cache, redis_client):
        """Test the script receives the generation, payload and TTL"""
        redis_client.eval.return_value = 1

        stored = await redis_cache.set_if_generation("k", ["u1"], generation=7, ttl=300)

        assert stored is True
        args = redis_client.eval.call_args.args
        assert args[1] == 3
        assert args[5:] == (7, json.dumps(["u1"]), 300)

    @pytest.mark.asyncio
    async def test_fence_and_release_send_deduplicated_triples(self, redis_cache, redis_client):
        """Test each logical key is sent once as a triple"""
        await redis_cache.fence(["a", "b", "a"])
        fence_args = redis_client.eval.call_args.args
        assert fence_args[0] == _FENCE_SCRIPT
        assert fence_args[1] == 6

        await redis_cache.release(["a", "b"])
        release_args = redis_client.eval.call_args.args
        assert release_args[0] == _RELEASE_SCRIPT
        assert release_args[-2] == 30

    @pytest.mark.asyncio
    async def test_fence_with_no_keys_is_noop(self, redis_cache, redis_client):
        """Test an empty key set does not hit Redis"""
        await redis_cache.fence([])
        redis_client.eval.assert_not_called()


class TestGetCacheBackend:
    """Test backend selection"""

    def test_memory_backend_by_default(self):
        """Test the singleton is an in-memory cache under test settings"""
        with patch("permsearch.core.cache._cache_backend", None):
            backend = get_cache_backend()
            assert isinstance(backend, CacheManager)
            assert get_cache_backend() is backend
