"""
Shared record types and time helpers.

Orders and customer profiles come from collaborator services; every
calculation module works on these plain dataclasses so it stays independent
of the storage layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR
SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_utc(dt: datetime | str | None) -> Optional[datetime]:
    """Normalize naive/aware datetimes and ISO strings to aware UTC."""
    if dt is None:
        return None
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_ms(dt: datetime) -> int:
    """Epoch milliseconds."""
    return int(coerce_utc(dt).timestamp() * 1000)


def from_ms(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from earlier to later."""
    return (coerce_utc(later) - coerce_utc(earlier)).total_seconds() / SECONDS_PER_DAY


@dataclass(frozen=True)
class Order:
    """A non-cancelled order as reported by the order service."""
    customer_id: str
    amount: float
    placed_at: datetime
    order_id: Optional[str] = None
    status: str = "completed"


@dataclass
class CustomerProfile:
    """Identity fields used for template variables and stop conditions."""
    customer_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    email_notifications: bool = True
    preferred_channel: str = "email"
    acquisition_source: str = "direct"
    created_at: Optional[datetime] = None
    extra: dict = field(default_factory=dict)
