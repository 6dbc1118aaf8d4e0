"""
Durable Workflow Store

Key/value storage with TTL plus a time-ordered job queue, used for workflow
instances (`automation:{automation_id}:{customer_id}`) and scheduled steps
(`automation:scheduled_jobs`).

Provides:
- RedisDurableStore: redis.asyncio backend (SET NX EX, ZADD, ZRANGEBYSCORE, ZREM)
- InMemoryDurableStore: single-process fallback for local/dev and tests
- create_durable_store(): connects Redis, falls back to memory if unreachable

Values are JSON-serialized. Unlike a cache, store failures are not silent:
Redis errors are logged and raised as DurableStoreError so callers can fail
closed.

Configuration:
- REDIS_URL: Redis connection string
- ENABLE_REDIS: Use Redis (default: true)
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from customer_intel.core.config import Settings, get_settings
from customer_intel.core.exceptions import DurableStoreError
from customer_intel.middleware.logging_config import get_logger

logger = get_logger(__name__)


class DurableStore(ABC):
    """Storage contract for workflow state and the scheduled job queue."""

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Deserialized value, or None if missing/expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Write a value, optionally expiring after ttl seconds."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Atomically create the key; False if it already exists."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """True if a key was removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def schedule(self, queue: str, member: str, score: float) -> None:
        """Insert a job into the time-ordered queue."""

    @abstractmethod
    async def due(self, queue: str, max_score: float, limit: Optional[int] = None) -> List[Tuple[str, float]]:
        """Jobs with score <= max_score, oldest first (not removed)."""

    @abstractmethod
    async def claim(self, queue: str, member: str) -> bool:
        """Atomically remove a job; True for exactly one claimant."""

    @abstractmethod
    async def pending(self, queue: str) -> int:
        """Number of queued jobs."""


# ==================== Redis ====================

class RedisDurableStore(DurableStore):
    """redis.asyncio backed store."""

    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.url = url
        self.client = client

    async def connect(self):
        """Connect to Redis and verify with PING."""
        if self.client is not None:
            return
        try:
            self.client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            await self.client.ping()
            logger.info("redis_connected", url=self.url)
        except (RedisError, OSError) as e:
            self.client = None
            logger.warning("redis_connection_failed", url=self.url, error=str(e))
            raise DurableStoreError("Redis connection failed", {"url": self.url, "error": str(e)}) from e

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("redis_disconnected")

    def _require_client(self) -> redis.Redis:
        if self.client is None:
            raise DurableStoreError("Redis client not connected", {"url": self.url})
        return self.client

    def _fail(self, operation: str, key: str, error: Exception) -> DurableStoreError:
        logger.error("durable_store_failed", operation=operation, key=key, error=str(error))
        return DurableStoreError(f"Redis {operation} failed", {"key": key, "error": str(error)})

    async def get(self, key: str) -> Optional[Any]:
        client = self._require_client()
        try:
            value = await client.get(key)
        except RedisError as e:
            raise self._fail("get", key, e) from e
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        client = self._require_client()
        try:
            await client.set(key, json.dumps(value), ex=ttl)
        except RedisError as e:
            raise self._fail("set", key, e) from e

    async def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        client = self._require_client()
        try:
            created = await client.set(key, json.dumps(value), ex=ttl, nx=True)
        except RedisError as e:
            raise self._fail("set_if_absent", key, e) from e
        return bool(created)

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.delete(key) > 0
        except RedisError as e:
            raise self._fail("delete", key, e) from e

    async def exists(self, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.exists(key) > 0
        except RedisError as e:
            raise self._fail("exists", key, e) from e

    async def schedule(self, queue: str, member: str, score: float) -> None:
        client = self._require_client()
        try:
            await client.zadd(queue, {member: score})
        except RedisError as e:
            raise self._fail("zadd", queue, e) from e

    async def due(self, queue: str, max_score: float, limit: Optional[int] = None) -> List[Tuple[str, float]]:
        client = self._require_client()
        try:
            if limit is not None:
                rows = await client.zrangebyscore(queue, "-inf", max_score, start=0, num=limit, withscores=True)
            else:
                rows = await client.zrangebyscore(queue, "-inf", max_score, withscores=True)
        except RedisError as e:
            raise self._fail("zrangebyscore", queue, e) from e
        return [(member, float(score)) for member, score in rows]

    async def claim(self, queue: str, member: str) -> bool:
        client = self._require_client()
        try:
            return await client.zrem(queue, member) == 1
        except RedisError as e:
            raise self._fail("zrem", queue, e) from e

    async def pending(self, queue: str) -> int:
        client = self._require_client()
        try:
            return int(await client.zcard(queue))
        except RedisError as e:
            raise self._fail("zcard", queue, e) from e


# ==================== In-memory ====================

class InMemoryDurableStore(DurableStore):
    """
    Process-local store with the same semantics as Redis.

    Operations never await between read and write, so each one is atomic on
    the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._queues: Dict[str, Dict[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._values[key]
            return None
        return value

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl else None

    async def get(self, key: str) -> Optional[Any]:
        value = self._live(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._values[key] = (json.dumps(value), self._expiry(ttl))

    async def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._values[key] = (json.dumps(value), self._expiry(ttl))
        return True

    async def delete(self, key: str) -> bool:
        live = self._live(key) is not None
        self._values.pop(key, None)
        return live

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def schedule(self, queue: str, member: str, score: float) -> None:
        self._queues.setdefault(queue, {})[member] = score

    async def due(self, queue: str, max_score: float, limit: Optional[int] = None) -> List[Tuple[str, float]]:
        jobs = sorted(
            ((member, score) for member, score in self._queues.get(queue, {}).items() if score <= max_score),
            key=lambda job: (job[1], job[0])
        )
        return jobs[:limit] if limit is not None else jobs

    async def claim(self, queue: str, member: str) -> bool:
        return self._queues.get(queue, {}).pop(member, None) is not None

    async def pending(self, queue: str) -> int:
        return len(self._queues.get(queue, {}))


async def create_durable_store(settings: Optional[Settings] = None) -> DurableStore:
    """
    Build the configured store.

    Falls back to the in-memory store when Redis is disabled or unreachable;
    that store is not shared across processes.
    """
    settings = settings or get_settings()
    if not settings.enable_redis:
        logger.info("durable_store_in_memory", reason="ENABLE_REDIS=false")
        return InMemoryDurableStore()

    store = RedisDurableStore(settings.redis_url)
    try:
        await store.connect()
    except DurableStoreError:
        logger.warning("durable_store_fallback", backend="memory")
        return InMemoryDurableStore()
    return store
