"""
Cache Manager
Read-through cache with TTL, explicit invalidation fences and per-key generations

A key moves through three states:
- cached: lookups return the stored value
- fenced: a writer is committing new source-of-truth data for the key; lookups
  never return a value and readers must not write back
- empty: lookups miss; a reader may write back, but only if the key's
  generation has not moved since the lookup
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from permsearch.core.config import settings
from permsearch.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache lookup"""

    hit: bool
    value: Any = None
    generation: int = 0
    fenced: bool = False


class CacheBackend(ABC):
    """Key-value store with TTL, explicit delete and invalidation fences"""

    name = "base"

    @abstractmethod
    async def lookup(self, key: str) -> CacheLookup:
        """Return the cached value, or the generation a write-back must match"""

    @abstractmethod
    async def set_if_generation(
        self,
        key: str,
        value: Any,
        generation: int,
        ttl: int,
    ) -> bool:
        """Store value only if the key is unfenced and still at `generation`"""

    @abstractmethod
    async def fence(self, keys: Iterable[str]) -> None:
        """Drop values and block read-through for keys until released"""

    @abstractmethod
    async def release(self, keys: Iterable[str]) -> None:
        """Drop values written during the fence and lift it"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value and advance the key's generation"""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry"""

    async def invalidate(self, keys: Iterable[str]) -> None:
        """Fence and immediately release keys"""
        keys = list(keys)
        await self.fence(keys)
        await self.release(keys)

    async def get_stats(self) -> Dict[str, Any]:
        return {"backend": self.name}

    async def close(self) -> None:
        return None


class CacheManager(CacheBackend):
    """
    In-memory cache manager with TTL support

    All state lives behind a single asyncio lock, so a lookup, a
    conditional write-back and a fence are each atomic with respect to
    one another.

    Generations come from one monotonic clock. Only fenced keys keep their
    own generation; every other key reports the floor, which moves past
    every issued generation whenever a key is released or deleted. Memory
    therefore tracks live entries and in-flight fences only.
    """

    name = "memory"

    # Expired entries are swept at most this often, on writes and misses
    SWEEP_INTERVAL_SECONDS = 60

    def __init__(self, sweep_interval: Optional[int] = None):
        """Initialize the cache manager"""
        self._cache: Dict[str, Tuple[Any, datetime]] = {}
        self._generations: Dict[str, int] = {}
        self._fences: Dict[str, int] = {}
        self._clock = 0
        self._floor = 0
        self._sweep_interval = timedelta(
            seconds=self.SWEEP_INTERVAL_SECONDS if sweep_interval is None else sweep_interval
        )
        self._next_sweep = datetime.now() + self._sweep_interval
        self._lock = asyncio.Lock()
        logger.info("CacheManager initialized")

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    def _generation(self, key: str) -> int:
        return self._generations.get(key, self._floor)

    def _retire(self, key: str) -> None:
        """Forget an unfenced key's generation; older generations stay stale"""
        self._generations.pop(key, None)
        self._floor = self._tick()

    def _sweep(self, now: datetime) -> int:
        expired_keys = [key for key, (_, expiry) in self._cache.items() if now > expiry]
        for key in expired_keys:
            del self._cache[key]
        self._next_sweep = now + self._sweep_interval
        return len(expired_keys)

    def _maybe_sweep(self, now: datetime) -> None:
        if now >= self._next_sweep:
            removed = self._sweep(now)
            if removed:
                logger.debug(f"Swept {removed} expired cache entries")

    async def lookup(self, key: str) -> CacheLookup:
        async with self._lock:
            generation = self._generation(key)
            if self._fences.get(key, 0) > 0:
                return CacheLookup(hit=False, generation=generation, fenced=True)

            now = datetime.now()
            entry = self._cache.get(key)
            if entry is None:
                self._maybe_sweep(now)
                return CacheLookup(hit=False, generation=generation)

            value, expiry = entry
            if now > expiry:
                del self._cache[key]
                logger.debug(f"Cache expired: {key}")
                self._maybe_sweep(now)
                return CacheLookup(hit=False, generation=generation)

            logger.debug(f"Cache hit: {key}")
            return CacheLookup(hit=True, value=value, generation=generation)

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired/fenced
        """
        result = await self.lookup(key)
        return result.value if result.hit else None

    async def set_if_generation(
        self,
        key: str,
        value: Any,
        generation: int,
        ttl: int,
    ) -> bool:
        async with self._lock:
            if self._fences.get(key, 0) > 0:
                logger.debug(f"Cache write-back rejected (fenced): {key}")
                return False
            if self._generation(key) != generation:
                logger.debug(f"Cache write-back rejected (generation moved): {key}")
                return False
            now = datetime.now()
            self._maybe_sweep(now)
            self._cache[key] = (value, now + timedelta(seconds=ttl))
            logger.debug(f"Cache set: {key} (TTL: {ttl}s)")
            return True

    async def set(self, key: str, value: Any, ttl: int = 3600) -> None:
        """
        Set a value in the cache unconditionally

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable)
            ttl: Time to live in seconds (default: 1 hour)
        """
        async with self._lock:
            now = datetime.now()
            self._maybe_sweep(now)
            self._cache[key] = (value, now + timedelta(seconds=ttl))

    async def fence(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._cache.pop(key, None)
                self._generations[key] = self._tick()
                self._fences[key] = self._fences.get(key, 0) + 1

    async def release(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._cache.pop(key, None)
                remaining = self._fences.get(key, 0) - 1
                if remaining > 0:
                    self._fences[key] = remaining
                    self._generations[key] = self._tick()
                else:
                    self._fences.pop(key, None)
                    self._retire(key)

    async def delete(self, key: str) -> bool:
        """
        Delete a value from the cache

        Args:
            key: Cache key

        Returns:
            True if key was deleted, False if not found
        """
        async with self._lock:
            if self._fences.get(key, 0) > 0:
                self._generations[key] = self._tick()
            else:
                self._retire(key)
            if key in self._cache:
                del self._cache[key]
                logger.debug(f"Cache deleted: {key}")
                return True
            return False

    async def clear(self) -> int:
        """
        Clear all cache entries

        Returns:
            Number of entries cleared
        """
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            for key in self._generations:
                self._generations[key] = self._tick()
            self._floor = self._tick()
            logger.info(f"Cache cleared: {count} entries")
            return count

    async def cleanup_expired(self) -> int:
        """
        Remove all expired entries from the cache

        Returns:
            Number of entries removed
        """
        async with self._lock:
            removed = self._sweep(datetime.now())
            if removed:
                logger.info(f"Cleaned up {removed} expired cache entries")
            return removed

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics

        Returns:
            Dictionary with cache stats
        """
        async with self._lock:
            now = datetime.now()
            active_count = sum(
                1
                for _, expiry in self._cache.values()
                if now <= expiry
            )
            expired_count = len(self._cache) - active_count

            return {
                "backend": self.name,
                "total_entries": len(self._cache),
                "active_entries": active_count,
                "expired_entries": expired_count,
                "fenced_keys": len(self._fences),
                "tracked_generations": len(self._generations),
            }


# KEYS[1]=value, KEYS[2]=generation, KEYS[3]=fence
_LOOKUP_SCRIPT = """
local gen = tonumber(redis.call('GET', KEYS[2]) or '0')
if tonumber(redis.call('GET', KEYS[3]) or '0') > 0 then
    return {1, gen, false}
end
return {0, gen, redis.call('GET', KEYS[1])}
"""

# ARGV[1]=expected generation, ARGV[2]=payload, ARGV[3]=ttl
_SET_IF_GENERATION_SCRIPT = """
local gen = tonumber(redis.call('GET', KEYS[2]) or '0')
if tonumber(redis.call('GET', KEYS[3]) or '0') > 0 then
    return 0
end
if gen ~= tonumber(ARGV[1]) then
    return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
return 1
"""

# KEYS come in (value, generation, fence) triples; ARGV[1]=fence ttl, ARGV[2]=generation ttl
_FENCE_SCRIPT = """
for i = 1, #KEYS, 3 do
    redis.call('DEL', KEYS[i])
    redis.call('INCR', KEYS[i + 1])
    redis.call('EXPIRE', KEYS[i + 1], ARGV[2])
    redis.call('INCR', KEYS[i + 2])
    redis.call('EXPIRE', KEYS[i + 2], ARGV[1])
end
return 1
"""

_RELEASE_SCRIPT = """
for i = 1, #KEYS, 3 do
    redis.call('DEL', KEYS[i])
    redis.call('INCR', KEYS[i + 1])
    redis.call('EXPIRE', KEYS[i + 1], ARGV[2])
    if redis.call('DECR', KEYS[i + 2]) <= 0 then
        redis.call('DEL', KEYS[i + 2])
    end
end
return 1
"""

# Generation counters outlive any single read-through by a wide margin
GENERATION_TTL_SECONDS = 86400


class RedisCache(CacheBackend):
    """
    Redis-hosted cache with the same fence/generation contract

    Each logical key owns three Redis keys sharing one hash tag so the Lua
    scripts stay single-slot under Redis Cluster.
    """

    name = "redis"

    def __init__(self, client: Any = None, fence_ttl: Optional[int] = None):
        if client is None:
            import redis.asyncio as redis_asyncio

            client = redis_asyncio.from_url(settings.REDIS_URL, decode_responses=True)
        self._redis = client
        self._fence_ttl = fence_ttl or settings.ACL_CACHE_FENCE_TTL_SECONDS
        logger.info("RedisCache initialized")

    @staticmethod
    def _triple(key: str) -> List[str]:
        tagged = "{" + key + "}"
        return [f"{tagged}:v", f"{tagged}:gen", f"{tagged}:fence"]

    async def lookup(self, key: str) -> CacheLookup:
        fenced, generation, payload = await self._redis.eval(
            _LOOKUP_SCRIPT, 3, *self._triple(key)
        )
        if int(fenced):
            return CacheLookup(hit=False, generation=int(generation), fenced=True)
        if payload is None:
            return CacheLookup(hit=False, generation=int(generation))
        return CacheLookup(hit=True, value=json.loads(payload), generation=int(generation))

    async def set_if_generation(
        self,
        key: str,
        value: Any,
        generation: int,
        ttl: int,
    ) -> bool:
        stored = await self._redis.eval(
            _SET_IF_GENERATION_SCRIPT,
            3,
            *self._triple(key),
            generation,
            json.dumps(value),
            ttl,
        )
        return bool(int(stored))

    def _flatten(self, keys: Iterable[str]) -> List[str]:
        flat: List[str] = []
        for key in dict.fromkeys(keys):
            flat.extend(self._triple(key))
        return flat

    async def fence(self, keys: Iterable[str]) -> None:
        flat = self._flatten(keys)
        if flat:
            await self._redis.eval(
                _FENCE_SCRIPT, len(flat), *flat, self._fence_ttl, GENERATION_TTL_SECONDS
            )

    async def release(self, keys: Iterable[str]) -> None:
        flat = self._flatten(keys)
        if flat:
            await self._redis.eval(
                _RELEASE_SCRIPT, len(flat), *flat, self._fence_ttl, GENERATION_TTL_SECONDS
            )

    async def delete(self, key: str) -> bool:
        value_key, gen_key, _ = self._triple(key)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(value_key)
            pipe.incr(gen_key)
            pipe.expire(gen_key, GENERATION_TTL_SECONDS)
            deleted, _, _ = await pipe.execute()
        return bool(deleted)

    async def clear(self) -> int:
        count = 0
        async for redis_key in self._redis.scan_iter(match="{acl:*"):
            count += await self._redis.delete(redis_key)
        logger.info(f"Redis ACL cache cleared: {count} keys")
        return count

    async def get_stats(self) -> Dict[str, Any]:
        info = await self._redis.info(section="memory")
        return {"backend": self.name, "used_memory": info.get("used_memory")}

    async def close(self) -> None:
        await self._redis.aclose()


# Global singleton instance
_cache_backend: Optional[CacheBackend] = None


def get_cache_backend() -> CacheBackend:
    """
    Get or create the global ACL cache backend

    Returns:
        CacheBackend selected by ACL_CACHE_BACKEND
    """
    global _cache_backend
    if _cache_backend is None:
        if settings.ACL_CACHE_BACKEND == "redis":
            _cache_backend = RedisCache()
        else:
            _cache_backend = CacheManager()
    return _cache_backend
