"""
Cache Store backends

Key-value cache contract used by the aggregation core, with:
- TTL-based expiry
- Set membership (active sessions)
- Atomic increment (realtime counters)
- Glob key matching (cache statistics and clearing)

``RedisCacheStore`` is the production backend; ``InMemoryCacheStore`` keeps
the same semantics inside the process for single-node deployments and tests.
"""

import fnmatch
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import structlog
from redis.asyncio import Redis, ConnectionPool

from beacon_analytics.config import Settings, get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis(settings: Optional[Settings] = None) -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = settings or get_settings()

    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )

    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error("Redis connection failed", error=str(e))
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class CacheStore(ABC):
    """Abstract key-value cache with TTL, sets and counters"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_with_expiry(self, key: str, ttl: int, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def increment(self, key: str) -> int:
        pass

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        pass

    @abstractmethod
    async def set_add(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    async def set_remove(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    async def set_members(self, key: str) -> Set[str]:
        pass

    @abstractmethod
    async def set_cardinality(self, key: str) -> int:
        pass

    @abstractmethod
    async def keys_matching(self, pattern: str) -> List[str]:
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def _decode(value: Union[str, bytes, None]) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisCacheStore(CacheStore):
    """
    CacheStore over a redis.asyncio client.

    Example:
        client = await init_redis()
        cache = RedisCacheStore(client)
        await cache.set_with_expiry("realtime:current", 60, payload)
    """

    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return _decode(await self.client.get(key))

    async def set_with_expiry(self, key: str, ttl: int, value: str) -> None:
        await self.client.setex(key, ttl, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def exists(self, key: str) -> bool:
        return await self.client.exists(key) > 0

    async def increment(self, key: str) -> int:
        return await self.client.incr(key)

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.client.expire(key, ttl))

    async def set_add(self, key: str, *members: str) -> int:
        return await self.client.sadd(key, *members)

    async def set_remove(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self.client.srem(key, *members)

    async def set_members(self, key: str) -> Set[str]:
        return {_decode(m) for m in await self.client.smembers(key)}

    async def set_cardinality(self, key: str) -> int:
        return await self.client.scard(key)

    async def keys_matching(self, pattern: str) -> List[str]:
        return [_decode(k) for k in await self.client.keys(pattern)]

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await close_redis()


class InMemoryCacheStore(CacheStore):
    """
    Process-local CacheStore.

    Expiry is evaluated lazily against a monotonic clock, so an injected
    ``clock`` lets tests move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Union[str, Set[str]], Optional[float]]] = {}

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry_of(self, key: str) -> Optional[float]:
        entry = self._data.get(key)
        return entry[1] if entry else None

    async def get(self, key: str) -> Optional[str]:
        value = self._live(key)
        if isinstance(value, set):
            raise TypeError(f"Key {key} holds a set, not a string")
        return value

    async def set_with_expiry(self, key: str, ttl: int, value: str) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                deleted += 1
        return deleted

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def increment(self, key: str) -> int:
        current = self._live(key)
        if isinstance(current, set):
            raise TypeError(f"Key {key} holds a set, not a counter")
        value = int(current or 0) + 1
        self._data[key] = (str(value), self._expiry_of(key) if current is not None else None)
        return value

    async def expire(self, key: str, ttl: int) -> bool:
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self._clock() + ttl)
        return True

    async def set_add(self, key: str, *members: str) -> int:
        current = self._live(key)
        if current is None:
            current = set()
            self._data[key] = (current, None)
        elif not isinstance(current, set):
            raise TypeError(f"Key {key} holds a string, not a set")
        added = len(set(members) - current)
        current.update(members)
        return added

    async def set_remove(self, key: str, *members: str) -> int:
        current = self._live(key)
        if not isinstance(current, set):
            return 0
        removed = len(current & set(members))
        current.difference_update(members)
        if not current:
            del self._data[key]
        return removed

    async def set_members(self, key: str) -> Set[str]:
        current = self._live(key)
        return set(current) if isinstance(current, set) else set()

    async def set_cardinality(self, key: str) -> int:
        current = self._live(key)
        return len(current) if isinstance(current, set) else 0

    async def keys_matching(self, pattern: str) -> List[str]:
        return [
            key for key in list(self._data)
            if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)
        ]
