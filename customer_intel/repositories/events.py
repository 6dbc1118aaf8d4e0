"""
Event History

Durable append-only behavioural log. The tracker keeps only a bounded
in-memory buffer; workflow conditions, variables and the abandoned-cart
sweep query this log instead.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from customer_intel.core.records import coerce_utc
from customer_intel.models.commerce import TrackedEventRecord
from customer_intel.tracking.events import Event, EventName

logger = logging.getLogger(__name__)


class EventHistory(Protocol):
    async def append(self, event: Event) -> None:
        ...

    async def events_for_customer(
        self,
        customer_id: str,
        names: Optional[Iterable[EventName]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        ...

    async def events_between(
        self,
        names: Iterable[EventName],
        start: datetime,
        end: datetime
    ) -> List[Event]:
        ...


def _to_event(row: TrackedEventRecord) -> Optional[Event]:
    try:
        name = EventName(row.event_name)
    except ValueError:
        logger.debug(f"Skipping unknown event name {row.event_name}")
        return None
    return Event(
        name=name,
        timestamp=coerce_utc(row.occurred_at),
        session_id=row.session_id,
        user_id=row.customer_id,
        payload=dict(row.properties or {}),
    )


class SqlEventHistory:
    """EventHistory over the `tracked_events` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, event: Event) -> None:
        record = TrackedEventRecord(
            event_name=event.name.value,
            event_category=event.category.value,
            session_id=event.session_id,
            customer_id=event.user_id,
            properties=dict(event.payload),
            occurred_at=coerce_utc(event.timestamp),
        )
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()

    async def events_for_customer(
        self,
        customer_id: str,
        names: Optional[Iterable[EventName]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """
        Events for one customer, newest first.

        Args:
            customer_id: Customer identifier
            names: Restrict to these event names
            since: Only events at or after this time
            limit: Maximum number of events
        """
        query = select(TrackedEventRecord).where(TrackedEventRecord.customer_id == customer_id)
        if names is not None:
            query = query.where(TrackedEventRecord.event_name.in_([n.value for n in names]))
        if since is not None:
            query = query.where(TrackedEventRecord.occurred_at >= coerce_utc(since))
        query = query.order_by(TrackedEventRecord.occurred_at.desc(), TrackedEventRecord.id.desc())
        if limit is not None:
            query = query.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [e for e in (_to_event(row) for row in result.scalars().all()) if e is not None]

    async def events_between(
        self,
        names: Iterable[EventName],
        start: datetime,
        end: datetime
    ) -> List[Event]:
        """Events of the given names in [start, end], oldest first."""
        query = (
            select(TrackedEventRecord)
            .where(TrackedEventRecord.event_name.in_([n.value for n in names]))
            .where(TrackedEventRecord.occurred_at >= coerce_utc(start))
            .where(TrackedEventRecord.occurred_at <= coerce_utc(end))
            .order_by(TrackedEventRecord.occurred_at, TrackedEventRecord.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [e for e in (_to_event(row) for row in result.scalars().all()) if e is not None]
