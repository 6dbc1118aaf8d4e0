"""Durable storage for workflow instances and the scheduled job queue."""

from customer_intel.cache.redis_store import (
    DurableStore,
    InMemoryDurableStore,
    RedisDurableStore,
    create_durable_store,
)

__all__ = [
    "DurableStore",
    "InMemoryDurableStore",
    "RedisDurableStore",
    "create_durable_store",
]
