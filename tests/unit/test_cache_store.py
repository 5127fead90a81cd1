"""
Unit Tests - Cache Store Backends
"""
from unittest.mock import AsyncMock

import pytest

from beacon_analytics.cache import InMemoryCacheStore, RedisCacheStore


class TestInMemoryCacheStore:
    """Tests for the process-local cache backend"""

    @pytest.mark.asyncio
    async def test_value_expires(self, cache_store, manual_clock):
        """Values disappear once their TTL has elapsed"""
        await cache_store.set_with_expiry("realtime:current", 60, "{}")

        assert await cache_store.get("realtime:current") == "{}"

        manual_clock.advance(59)
        assert await cache_store.exists("realtime:current")

        manual_clock.advance(1)
        assert await cache_store.get("realtime:current") is None
        assert not await cache_store.exists("realtime:current")

    @pytest.mark.asyncio
    async def test_delete_counts_live_keys(self, cache_store):
        """Only keys that existed are counted as deleted"""
        await cache_store.set_with_expiry("a", 10, "1")
        await cache_store.set_with_expiry("b", 10, "2")

        assert await cache_store.delete("a", "b", "missing") == 2
        assert await cache_store.delete() == 0

    @pytest.mark.asyncio
    async def test_increment_keeps_expiry(self, cache_store, manual_clock):
        """Incrementing a counter does not reset its TTL"""
        assert await cache_store.increment("counter") == 1
        await cache_store.expire("counter", 100)

        manual_clock.advance(50)
        assert await cache_store.increment("counter") == 2

        manual_clock.advance(50)
        assert await cache_store.get("counter") is None

    @pytest.mark.asyncio
    async def test_expire_missing_key(self, cache_store):
        """Expiring an absent key reports False"""
        assert await cache_store.expire("missing", 10) is False

    @pytest.mark.asyncio
    async def test_set_operations(self, cache_store):
        """Sets support add, remove, members and cardinality"""
        assert await cache_store.set_add("active", "s1", "s2") == 2
        assert await cache_store.set_add("active", "s2", "s3") == 1
        assert await cache_store.set_cardinality("active") == 3

        assert await cache_store.set_remove("active", "s1", "nope") == 1
        assert await cache_store.set_members("active") == {"s2", "s3"}

    @pytest.mark.asyncio
    async def test_emptied_set_is_removed(self, cache_store):
        """A set with no members no longer exists"""
        await cache_store.set_add("active", "s1")
        await cache_store.set_remove("active", "s1")

        assert not await cache_store.exists("active")
        assert await cache_store.set_cardinality("active") == 0

    @pytest.mark.asyncio
    async def test_wrong_type_access(self, cache_store):
        """Reading a set as a string is an error"""
        await cache_store.set_add("active", "s1")

        with pytest.raises(TypeError):
            await cache_store.get("active")

    @pytest.mark.asyncio
    async def test_keys_matching_glob(self, cache_store, manual_clock):
        """Glob patterns match live keys only"""
        await cache_store.set_with_expiry("metrics:hourly:2024-01-01T10", 100, "{}")
        await cache_store.set_with_expiry("metrics:daily:2024-01-01", 10, "{}")
        await cache_store.set_with_expiry("session:abc", 100, "{}")

        manual_clock.advance(20)

        assert await cache_store.keys_matching("metrics:*") == ["metrics:hourly:2024-01-01T10"]
        assert len(await cache_store.keys_matching("*")) == 2

    @pytest.mark.asyncio
    async def test_ping(self):
        """The in-process backend is always reachable"""
        assert await InMemoryCacheStore().ping() is True


class TestRedisCacheStore:
    """Tests for the Redis adapter command mapping"""

    @pytest.mark.asyncio
    async def test_set_with_expiry_uses_setex(self):
        """Writes carry their TTL in a single command"""
        client = AsyncMock()
        store = RedisCacheStore(client)

        await store.set_with_expiry("realtime:current", 60, "{}")

        client.setex.assert_awaited_once_with("realtime:current", 60, "{}")

    @pytest.mark.asyncio
    async def test_bytes_are_decoded(self):
        """Clients without decode_responses still yield strings"""
        client = AsyncMock()
        client.get.return_value = b'{"a": 1}'
        client.smembers.return_value = {b"s1", b"s2"}
        client.keys.return_value = [b"metrics:daily:2024-01-01"]
        store = RedisCacheStore(client)

        assert await store.get("k") == '{"a": 1}'
        assert await store.set_members("active") == {"s1", "s2"}
        assert await store.keys_matching("metrics:*") == ["metrics:daily:2024-01-01"]

    @pytest.mark.asyncio
    async def test_empty_delete_skips_round_trip(self):
        """Deleting nothing never reaches Redis"""
        client = AsyncMock()
        store = RedisCacheStore(client)

        assert await store.delete() == 0
        client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exists_and_cardinality(self):
        """Integer replies are mapped to the contract types"""
        client = AsyncMock()
        client.exists.return_value = 1
        client.scard.return_value = 4
        store = RedisCacheStore(client)

        assert await store.exists("k") is True
        assert await store.set_cardinality("active") == 4
