"""
Commerce Database Models

SQLAlchemy models for the collaborator data the intelligence sweeps read:
- CustomerRecord: identity and contact preferences
- OrderRecord: authoritative order history
- TrackedEventRecord: durable behavioural event log
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String
from sqlalchemy.sql import func

from customer_intel.core.database import Base


class CustomerRecord(Base):
    """Customer identity row (owned by the account service, read-only here)."""
    __tablename__ = "customers"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))

    # Contact preferences
    email_notifications = Column(Boolean, nullable=False, default=True)
    preferred_channel = Column(String(20), nullable=False, default="email")  # email, chat

    acquisition_source = Column(String(100), default="direct")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<CustomerRecord {self.id} - {self.email}>"


class OrderRecord(Base):
    """Order row; cancelled and refunded orders are ignored by scoring."""
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    customer_id = Column(String(64), nullable=False, index=True)
    total_amount = Column(Float, nullable=False, default=0.0)
    status = Column(String(30), nullable=False, default="completed", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self):
        return f"<OrderRecord {self.id} - {self.customer_id} - {self.total_amount}>"


class TrackedEventRecord(Base):
    """Append-only behavioural event."""
    __tablename__ = "tracked_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_name = Column(String(64), nullable=False, index=True)
    event_category = Column(String(32), nullable=False)
    session_id = Column(String(64), index=True)
    customer_id = Column(String(64), index=True)
    properties = Column(JSON, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<TrackedEventRecord {self.event_name} - {self.customer_id}>"
