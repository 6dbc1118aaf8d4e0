"""
Tests for the Durable Workflow Store

Tests:
- In-memory TTL expiry and set-if-absent
- Job queue ordering, limits and single claim
- Redis backend commands and error wrapping (mocked client)
- Store selection when Redis is disabled or unreachable
"""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from customer_intel.cache.redis_store import (
    InMemoryDurableStore,
    RedisDurableStore,
    create_durable_store,
)
from customer_intel.core.config import Settings
from customer_intel.core.exceptions import DurableStoreError


class Ticker:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def memory_store(ticker):
    return InMemoryDurableStore(clock=ticker)


class TestInMemoryValues:
    """Test key/value operations"""

    @pytest.mark.asyncio
    async def test_value_expires_after_ttl(self, memory_store, ticker):
        await memory_store.set("automation:a:c1", {"current_step": 1}, ttl=60)

        ticker.now += 59
        assert await memory_store.get("automation:a:c1") == {"current_step": 1}
        ticker.now += 1
        assert await memory_store.get("automation:a:c1") is None
        assert not await memory_store.exists("automation:a:c1")

    @pytest.mark.asyncio
    async def test_set_if_absent(self, memory_store, ticker):
        assert await memory_store.set_if_absent("k", {"v": 1}, ttl=10)
        assert not await memory_store.set_if_absent("k", {"v": 2}, ttl=10)
        assert await memory_store.get("k") == {"v": 1}

        ticker.now += 10
        assert await memory_store.set_if_absent("k", {"v": 3}, ttl=10)
        assert await memory_store.get("k") == {"v": 3}

    @pytest.mark.asyncio
    async def test_delete_reports_live_keys_only(self, memory_store):
        await memory_store.set("k", 1)
        assert await memory_store.delete("k")
        assert not await memory_store.delete("k")


class TestInMemoryQueue:
    """Test the scheduled job queue"""

    @pytest.mark.asyncio
    async def test_due_is_ordered_and_bounded(self, memory_store):
        await memory_store.schedule("q", "late", 300)
        await memory_store.schedule("q", "early", 100)
        await memory_store.schedule("q", "future", 900)

        assert await memory_store.due("q", 500) == [("early", 100), ("late", 300)]
        assert await memory_store.due("q", 500, limit=1) == [("early", 100)]
        assert await memory_store.pending("q") == 3

    @pytest.mark.asyncio
    async def test_job_claimed_once(self, memory_store):
        await memory_store.schedule("q", "job", 100)

        assert await memory_store.claim("q", "job")
        assert not await memory_store.claim("q", "job")
        assert await memory_store.due("q", 500) == []

    @pytest.mark.asyncio
    async def test_rescheduling_same_member_moves_it(self, memory_store):
        await memory_store.schedule("q", "job", 100)
        await memory_store.schedule("q", "job", 700)

        assert await memory_store.due("q", 500) == []
        assert await memory_store.pending("q") == 1


class TestRedisStore:
    """Test the Redis backend against a mocked client"""

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def redis_store(self, client):
        return RedisDurableStore("redis://test", client=client)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, redis_store, client):
        client.get.return_value = json.dumps({"current_step": 2})

        assert await redis_store.get("automation:a:c1") == {"current_step": 2}
        client.get.assert_awaited_once_with("automation:a:c1")

    @pytest.mark.asyncio
    async def test_set_if_absent_uses_nx(self, redis_store, client):
        client.set.return_value = None

        assert not await redis_store.set_if_absent("k", {"v": 1}, ttl=30)
        client.set.assert_awaited_once_with("k", json.dumps({"v": 1}), ex=30, nx=True)

    @pytest.mark.asyncio
    async def test_claim_is_zrem(self, redis_store, client):
        client.zrem.return_value = 1
        assert await redis_store.claim("q", "job")

        client.zrem.return_value = 0
        assert not await redis_store.claim("q", "job")

    @pytest.mark.asyncio
    async def test_due_with_limit(self, redis_store, client):
        client.zrangebyscore.return_value = [("job", 100)]

        assert await redis_store.due("q", 500, limit=10) == [("job", 100.0)]
        client.zrangebyscore.assert_awaited_once_with(
            "q", "-inf", 500, start=0, num=10, withscores=True
        )

    @pytest.mark.asyncio
    async def test_redis_error_is_wrapped(self, redis_store, client):
        client.exists.side_effect = RedisConnectionError("connection reset")

        with pytest.raises(DurableStoreError) as exc_info:
            await redis_store.exists("k")

        assert exc_info.value.details["key"] == "k"
        assert "connection reset" in exc_info.value.details["error"]

    @pytest.mark.asyncio
    async def test_not_connected(self):
        store = RedisDurableStore("redis://test")
        with pytest.raises(DurableStoreError):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_close(self, redis_store, client):
        await redis_store.close()

        client.aclose.assert_awaited_once()
        assert redis_store.client is None


class TestCreateDurableStore:
    """Test backend selection"""

    @pytest.mark.asyncio
    async def test_redis_disabled(self):
        store = await create_durable_store(Settings(enable_redis=False))
        assert isinstance(store, InMemoryDurableStore)

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back(self, monkeypatch):
        async def refuse(self):
            raise DurableStoreError("Redis connection failed")

        monkeypatch.setattr(RedisDurableStore, "connect", refuse)

        store = await create_durable_store(Settings(enable_redis=True, redis_url="redis://nowhere:6379"))
        assert isinstance(store, InMemoryDurableStore)
