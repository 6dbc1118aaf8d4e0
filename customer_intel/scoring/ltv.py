"""
Customer Lifetime Value (LTV)

Projects next-12-month value from purchase history and derives a 0-100
customer health score. Segment membership (high/medium/low/churned) is a
partition of all scored customers ranked by predicted LTV.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from customer_intel.core.records import Order, coerce_utc, days_between, utcnow

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
CHURN_DAYS = 90

HIGH_SHARE = 0.2
MEDIUM_SHARE = 0.5


class LTVSegment(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CHURNED = "churned"


@dataclass(frozen=True)
class LTVRecord:
    customer_id: str
    total_spent: float
    order_count: int
    avg_order_value: float
    first_purchase: datetime
    last_purchase: datetime
    lifespan_months: float
    purchase_frequency: float  # orders per month
    predicted_ltv: float       # next 12 months
    health_score: float        # 0-100
    days_since_last_purchase: float


@dataclass(frozen=True)
class LTVReport:
    records: Dict[str, LTVRecord]
    segments: Dict[LTVSegment, Set[str]]
    average_ltv: float
    total_customers: int
    computed_at: datetime

    def segment_of(self, customer_id: str) -> Optional[LTVSegment]:
        for segment, members in self.segments.items():
            if customer_id in members:
                return segment
        return None


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def compute_ltv(
    customer_id: str,
    orders: Sequence[Order],
    now: Optional[datetime] = None
) -> Optional[LTVRecord]:
    """
    Compute LTV and health for one customer.

    Frequency is order_count / max(lifespan_months, 1): a single order or a
    sub-month lifespan yields frequency == order_count.

    Args:
        customer_id: Customer identifier
        orders: Non-cancelled orders
        now: Reference time

    Returns:
        LTVRecord, or None when the customer has no orders
    """
    if not orders:
        return None

    now = coerce_utc(now) or utcnow()
    amounts = [max(0.0, o.amount or 0.0) for o in orders]
    dates = [coerce_utc(o.placed_at) for o in orders]

    total_spent = float(sum(amounts))
    order_count = len(orders)
    avg_order_value = total_spent / order_count
    first_purchase = min(dates)
    last_purchase = max(dates)

    lifespan_months = days_between(first_purchase, last_purchase) / DAYS_PER_MONTH
    frequency = order_count / max(lifespan_months, 1.0)
    predicted_ltv = max(0.0, avg_order_value * frequency * 12)

    days_since_last = max(0.0, days_between(last_purchase, now))
    recency_component = max(0.0, 100 - days_since_last * 2)
    frequency_component = min(100.0, frequency * 20)
    monetary_component = min(100.0, avg_order_value / 10)
    health_score = _clamp(
        0.4 * recency_component + 0.3 * frequency_component + 0.3 * monetary_component
    )

    return LTVRecord(
        customer_id=customer_id,
        total_spent=total_spent,
        order_count=order_count,
        avg_order_value=avg_order_value,
        first_purchase=first_purchase,
        last_purchase=last_purchase,
        lifespan_months=lifespan_months,
        purchase_frequency=frequency,
        predicted_ltv=predicted_ltv,
        health_score=health_score,
        days_since_last_purchase=days_since_last,
    )


def segment_ltv(records: Sequence[LTVRecord]) -> Dict[LTVSegment, Set[str]]:
    """
    Partition customers by predicted LTV rank.

    Top floor(20%) are high, the rest up to floor(50%) medium; the remainder
    is low while still active (< 90 days since last purchase), else churned.
    Ties keep customer-id order so repeated passes are stable.
    """
    segments: Dict[LTVSegment, Set[str]] = {segment: set() for segment in LTVSegment}
    ranked = sorted(records, key=lambda r: (-r.predicted_ltv, r.customer_id))
    n = len(ranked)
    high_cut = int(n * HIGH_SHARE)
    medium_cut = int(n * MEDIUM_SHARE)

    for i, record in enumerate(ranked):
        if i < high_cut:
            segments[LTVSegment.HIGH].add(record.customer_id)
        elif i < medium_cut:
            segments[LTVSegment.MEDIUM].add(record.customer_id)
        elif record.days_since_last_purchase < CHURN_DAYS:
            segments[LTVSegment.LOW].add(record.customer_id)
        else:
            segments[LTVSegment.CHURNED].add(record.customer_id)

    return segments


def score_ltv_population(
    orders_by_customer: Dict[str, List[Order]],
    now: Optional[datetime] = None
) -> LTVReport:
    """Compute LTV for every customer with orders and rebuild the segments."""
    now = coerce_utc(now) or utcnow()
    records: Dict[str, LTVRecord] = {}

    for customer_id, orders in orders_by_customer.items():
        try:
            record = compute_ltv(customer_id, orders, now)
        except Exception as e:
            logger.error(f"LTV calculation failed for customer {customer_id}: {e}")
            continue
        if record is not None:
            records[customer_id] = record

    total = len(records)
    average = sum(r.predicted_ltv for r in records.values()) / total if total else 0.0

    return LTVReport(
        records=records,
        segments=segment_ltv(list(records.values())),
        average_ltv=average,
        total_customers=total,
        computed_at=now,
    )
