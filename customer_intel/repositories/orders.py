"""
Order History

Read-only access to authoritative orders. Cancelled and refunded orders are
never returned.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from customer_intel.core.records import Order, coerce_utc
from customer_intel.models.commerce import OrderRecord

EXCLUDED_STATUSES = ("cancelled", "refunded")


class OrderHistory(Protocol):
    async def orders_for_customer(self, customer_id: str, since: Optional[datetime] = None) -> List[Order]:
        ...

    async def all_orders(self) -> Dict[str, List[Order]]:
        ...


def _to_order(row: OrderRecord) -> Order:
    return Order(
        customer_id=row.customer_id,
        amount=float(row.total_amount or 0.0),
        placed_at=coerce_utc(row.created_at),
        order_id=row.id,
        status=row.status,
    )


class SqlOrderHistory:
    """OrderHistory over the `orders` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def orders_for_customer(self, customer_id: str, since: Optional[datetime] = None) -> List[Order]:
        """
        Non-cancelled orders for one customer, oldest first.

        Args:
            customer_id: Customer identifier
            since: Only orders placed at or after this time
        """
        query = (
            select(OrderRecord)
            .where(OrderRecord.customer_id == customer_id)
            .where(OrderRecord.status.notin_(EXCLUDED_STATUSES))
            .order_by(OrderRecord.created_at)
        )
        if since is not None:
            query = query.where(OrderRecord.created_at >= coerce_utc(since))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_order(row) for row in result.scalars().all()]

    async def all_orders(self) -> Dict[str, List[Order]]:
        """Every non-cancelled order grouped by customer."""
        query = (
            select(OrderRecord)
            .where(OrderRecord.status.notin_(EXCLUDED_STATUSES))
            .order_by(OrderRecord.customer_id, OrderRecord.created_at)
        )
        grouped: Dict[str, List[Order]] = defaultdict(list)
        async with self.session_factory() as session:
            result = await session.execute(query)
            for row in result.scalars().all():
                grouped[row.customer_id].append(_to_order(row))
        return dict(grouped)
