"""
Rule-Based Customer Segmentation

Three independent axes, each a partition of the customers passed in:
- Behavioural: purchase count (plus a non-exclusive "inactive" flag)
- Value: total spend
- Engagement: days since any activity

Every call builds new sets; nothing is diffed against a previous pass.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional, Set

from customer_intel.core.records import coerce_utc, days_between, utcnow

logger = logging.getLogger(__name__)

INACTIVE_AFTER_DAYS = 30


class BehavioralSegment(str, Enum):
    BROWSERS = "browsers"              # No purchases yet
    ONE_TIME_BUYERS = "oneTimeBuyers"  # 1 purchase
    REPEAT_BUYERS = "repeatBuyers"     # 2-5 purchases
    LOYALISTS = "loyalists"            # 6+ purchases
    INACTIVE = "inactive"              # Not seen for 30+ days (overlaps the others)


class ValueSegment(str, Enum):
    VIP = "vip"
    HIGH_VALUE = "highValue"
    MEDIUM_VALUE = "mediumValue"
    LOW_VALUE = "lowValue"


class EngagementSegment(str, Enum):
    SUPER_ACTIVE = "superActive"  # Daily visits
    ACTIVE = "active"             # Weekly
    CASUAL = "casual"             # Monthly
    DORMANT = "dormant"


@dataclass(frozen=True)
class CustomerActivitySummary:
    """Per-customer inputs for segmentation."""
    customer_id: str
    purchase_count: int
    total_spent: float
    last_active: datetime


@dataclass(frozen=True)
class SegmentReport:
    behavioral: Dict[BehavioralSegment, Set[str]]
    value: Dict[ValueSegment, Set[str]]
    engagement: Dict[EngagementSegment, Set[str]]
    computed_at: datetime

    def counts(self) -> Dict[str, Dict[str, int]]:
        return {
            "behavioral": {k.value: len(v) for k, v in self.behavioral.items()},
            "value": {k.value: len(v) for k, v in self.value.items()},
            "engagement": {k.value: len(v) for k, v in self.engagement.items()},
        }


def behavioral_segment(purchase_count: int) -> BehavioralSegment:
    if purchase_count <= 0:
        return BehavioralSegment.BROWSERS
    if purchase_count == 1:
        return BehavioralSegment.ONE_TIME_BUYERS
    if purchase_count <= 5:
        return BehavioralSegment.REPEAT_BUYERS
    return BehavioralSegment.LOYALISTS


def value_segment(total_spent: float) -> ValueSegment:
    if total_spent >= 1000:
        return ValueSegment.VIP
    if total_spent >= 500:
        return ValueSegment.HIGH_VALUE
    if total_spent >= 100:
        return ValueSegment.MEDIUM_VALUE
    return ValueSegment.LOW_VALUE


def engagement_segment(days_since_active: float) -> EngagementSegment:
    if days_since_active <= 1:
        return EngagementSegment.SUPER_ACTIVE
    if days_since_active <= 7:
        return EngagementSegment.ACTIVE
    if days_since_active <= 30:
        return EngagementSegment.CASUAL
    return EngagementSegment.DORMANT


def segment_customers(
    customers: Iterable[CustomerActivitySummary],
    now: Optional[datetime] = None
) -> SegmentReport:
    """
    Bucket every customer on all three axes.

    Args:
        customers: Activity summaries (one per customer)
        now: Reference time

    Returns:
        SegmentReport with freshly built sets (all keys present)
    """
    now = coerce_utc(now) or utcnow()
    behavioral: Dict[BehavioralSegment, Set[str]] = {s: set() for s in BehavioralSegment}
    value: Dict[ValueSegment, Set[str]] = {s: set() for s in ValueSegment}
    engagement: Dict[EngagementSegment, Set[str]] = {s: set() for s in EngagementSegment}

    for customer in customers:
        days_since_active = max(0.0, days_between(customer.last_active, now))

        behavioral[behavioral_segment(customer.purchase_count)].add(customer.customer_id)
        if days_since_active > INACTIVE_AFTER_DAYS:
            behavioral[BehavioralSegment.INACTIVE].add(customer.customer_id)

        value[value_segment(customer.total_spent)].add(customer.customer_id)
        engagement[engagement_segment(days_since_active)].add(customer.customer_id)

    return SegmentReport(
        behavioral=behavioral,
        value=value,
        engagement=engagement,
        computed_at=now,
    )
