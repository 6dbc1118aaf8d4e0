"""Customer Directory: profile fields for template variables and stop conditions."""

from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from customer_intel.core.records import CustomerProfile, coerce_utc
from customer_intel.models.commerce import CustomerRecord


class CustomerDirectory(Protocol):
    async def get_profile(self, customer_id: str) -> Optional[CustomerProfile]:
        ...

    async def all_profiles(self) -> List[CustomerProfile]:
        ...


def _to_profile(row: CustomerRecord) -> CustomerProfile:
    return CustomerProfile(
        customer_id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        phone=row.phone,
        email_notifications=bool(row.email_notifications),
        preferred_channel=row.preferred_channel or "email",
        acquisition_source=row.acquisition_source or "direct",
        created_at=coerce_utc(row.created_at),
    )


class SqlCustomerDirectory:
    """CustomerDirectory over the `customers` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_profile(self, customer_id: str) -> Optional[CustomerProfile]:
        async with self.session_factory() as session:
            row = await session.get(CustomerRecord, customer_id)
            return _to_profile(row) if row else None

    async def all_profiles(self) -> List[CustomerProfile]:
        async with self.session_factory() as session:
            result = await session.execute(select(CustomerRecord).order_by(CustomerRecord.created_at))
            return [_to_profile(row) for row in result.scalars().all()]
