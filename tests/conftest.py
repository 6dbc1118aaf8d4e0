"""
Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Frozen clock
- In-memory collaborators (orders, customers, events, dispatcher)
- In-memory durable store, workflow engine and intelligence service
- aiosqlite database engine for the SQL repositories
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from customer_intel.automation.engine import WorkflowEngine
from customer_intel.automation.notifications import (
    DispatchResult,
    NotificationChannel,
    NotificationDispatcher,
    NotificationMessage,
)
from customer_intel.cache.redis_store import InMemoryDurableStore
from customer_intel.core.config import Settings
from customer_intel.core.database import Base, create_session_factory
from customer_intel.core.records import CustomerProfile, Order, coerce_utc
from customer_intel.services.intelligence_service import IntelligenceService
from customer_intel.tracking.events import Event, EventName

NOW = datetime(2025, 6, 18, 12, 0, tzinfo=timezone.utc)


# ==================== Clock ====================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ==================== Fake collaborators ====================

class FakeOrderHistory:
    def __init__(self):
        self.orders: Dict[str, List[Order]] = defaultdict(list)

    def add(self, customer_id: str, amount: float, placed_at: datetime, status: str = "completed") -> Order:
        order = Order(customer_id=customer_id, amount=amount, placed_at=placed_at, status=status)
        self.orders[customer_id].append(order)
        return order

    async def orders_for_customer(self, customer_id: str, since: Optional[datetime] = None) -> List[Order]:
        orders = sorted(self.orders.get(customer_id, []), key=lambda o: o.placed_at)
        if since is not None:
            orders = [o for o in orders if coerce_utc(o.placed_at) >= coerce_utc(since)]
        return orders

    async def all_orders(self) -> Dict[str, List[Order]]:
        return {cid: list(orders) for cid, orders in self.orders.items() if orders}


class FakeCustomerDirectory:
    def __init__(self):
        self.profiles: Dict[str, CustomerProfile] = {}

    def add(self, customer_id: str, **fields) -> CustomerProfile:
        fields.setdefault("first_name", "Ada")
        fields.setdefault("email", f"{customer_id}@example.com")
        profile = CustomerProfile(customer_id=customer_id, **fields)
        self.profiles[customer_id] = profile
        return profile

    async def get_profile(self, customer_id: str) -> Optional[CustomerProfile]:
        return self.profiles.get(customer_id)

    async def all_profiles(self) -> List[CustomerProfile]:
        return list(self.profiles.values())


class FakeEventHistory:
    def __init__(self):
        self.events: List[Event] = []

    async def append(self, event: Event) -> None:
        self.events.append(event)

    def named(self, name: EventName) -> List[Event]:
        return [e for e in self.events if e.name == name]

    async def events_for_customer(
        self,
        customer_id: str,
        names: Optional[Iterable[EventName]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        names = set(names) if names is not None else None
        matched = [
            e for e in self.events
            if e.user_id == customer_id
            and (names is None or e.name in names)
            and (since is None or coerce_utc(e.timestamp) >= coerce_utc(since))
        ]
        matched.sort(key=lambda e: e.timestamp, reverse=True)
        return matched[:limit] if limit is not None else matched

    async def events_between(self, names: Iterable[EventName], start: datetime, end: datetime) -> List[Event]:
        names = set(names)
        matched = [
            e for e in self.events
            if e.name in names and coerce_utc(start) <= coerce_utc(e.timestamp) <= coerce_utc(end)
        ]
        return sorted(matched, key=lambda e: e.timestamp)


class RecordingDispatcher(NotificationDispatcher):
    """Records every send; fails the first `failures` attempts."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.sent: List[tuple] = []

    async def send(self, channel: NotificationChannel, recipient: str, message: NotificationMessage):
        self.attempts += 1
        if self.attempts <= self.failures:
            return DispatchResult(success=False, channel=channel, recipient=recipient, error="provider down")
        self.sent.append((channel, recipient, message))
        return DispatchResult(success=True, channel=channel, recipient=recipient, provider_id=f"msg-{self.attempts}")

    @property
    def templates(self) -> List[str]:
        return [message.template for _, _, message in self.sent]


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ==================== Fixtures ====================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return Settings(
        enable_redis=False,
        store_name="Trail Outfitters",
        store_url="https://shop.test",
        support_agent_name="Sam",
    )


@pytest.fixture
def orders():
    return FakeOrderHistory()


@pytest.fixture
def customers():
    return FakeCustomerDirectory()


@pytest.fixture
def events():
    return FakeEventHistory()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def store():
    return InMemoryDurableStore()


@pytest.fixture
def engine(store, orders, customers, events, dispatcher, settings, clock, sleep):
    return WorkflowEngine(
        store,
        orders,
        customers,
        events,
        dispatcher,
        settings=settings,
        clock=clock,
        sleep=sleep,
    )


@pytest.fixture
def service(orders, customers, events, engine, settings, clock):
    return IntelligenceService(orders, customers, events, engine, settings=settings, clock=clock)


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with every table created."""
    from customer_intel import models  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)
