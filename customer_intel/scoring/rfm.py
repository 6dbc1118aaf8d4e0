"""
RFM (Recency, Frequency, Monetary) Scoring

Scores every customer 1-5 on each dimension (5 is best) from authoritative
order history and assigns exactly one named segment.

Two bucketing policies are supported:
- FIXED (default): absolute thresholds, stable for small or cold-start stores
- PERCENTILE: population quintiles recomputed every pass, recency inverted

Scores are never mutated incrementally; score_population() rebuilds the
whole population and the segment map from scratch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from customer_intel.core.records import Order, coerce_utc, days_between, utcnow

logger = logging.getLogger(__name__)


class RFMPolicy(str, Enum):
    """Bucketing policy"""
    FIXED = "fixed"
    PERCENTILE = "percentile"


class RFMSegment(str, Enum):
    """RFM segment labels"""
    CHAMPIONS = "champions"
    LOYAL_CUSTOMERS = "loyalCustomers"
    POTENTIAL_LOYALIST = "potentialLoyalist"
    NEW_CUSTOMERS = "newCustomers"
    PROMISING = "promising"
    NEEDS_ATTENTION = "needsAttention"
    ABOUT_TO_SLEEP = "aboutToSleep"
    AT_RISK = "atRisk"
    CANT_LOSE_THEM = "cantLoseThem"
    HIBERNATING = "hibernating"
    LOST = "lost"
    OTHER = "other"


# Fixed thresholds: (bound, score), checked in order
RECENCY_THRESHOLDS = [(7, 5), (30, 4), (60, 3), (90, 2)]        # days, lower is better
FREQUENCY_THRESHOLDS = [(20, 5), (10, 4), (5, 3), (2, 2)]        # order count
MONETARY_THRESHOLDS = [(1000, 5), (500, 4), (200, 3), (50, 2)]   # total spent

QUINTILES = (20, 40, 60, 80)


@dataclass(frozen=True)
class RFMBoundaries:
    """Population quintile boundaries (20/40/60/80th percentile) per dimension."""
    recency: Tuple[float, float, float, float]
    frequency: Tuple[float, float, float, float]
    monetary: Tuple[float, float, float, float]


@dataclass(frozen=True)
class RFMScore:
    customer_id: str
    recency_score: int
    frequency_score: int
    monetary_score: int
    composite: str
    segment: RFMSegment
    recency_days: float
    order_count: int
    total_spent: float
    last_updated: datetime


@dataclass(frozen=True)
class RFMReport:
    """One full scoring pass."""
    policy: RFMPolicy
    scores: Dict[str, RFMScore]
    segments: Dict[RFMSegment, Set[str]]
    computed_at: datetime
    boundaries: Optional[RFMBoundaries] = None

    def segment_of(self, customer_id: str) -> Optional[RFMSegment]:
        score = self.scores.get(customer_id)
        return score.segment if score else None


@dataclass
class _RawRFM:
    customer_id: str
    recency_days: float
    order_count: int
    total_spent: float


def _raw_rfm(customer_id: str, orders: Sequence[Order], now: datetime) -> Optional[_RawRFM]:
    if not orders:
        return None
    last_order = max(coerce_utc(o.placed_at) for o in orders)
    return _RawRFM(
        customer_id=customer_id,
        recency_days=max(0.0, days_between(last_order, now)),
        order_count=len(orders),
        total_spent=float(sum(max(0.0, o.amount or 0.0) for o in orders)),
    )


# ==================== Fixed policy ====================

def score_recency(days: float) -> int:
    for bound, score in RECENCY_THRESHOLDS:
        if days <= bound:
            return score
    return 1


def score_frequency(count: int) -> int:
    for bound, score in FREQUENCY_THRESHOLDS:
        if count >= bound:
            return score
    return 1


def score_monetary(total: float) -> int:
    for bound, score in MONETARY_THRESHOLDS:
        if total >= bound:
            return score
    return 1


# ==================== Percentile policy ====================

def percentile_boundaries(values: Iterable[float]) -> Tuple[float, float, float, float]:
    """
    Quintile boundaries of a population.

    Indexes the sorted values at floor(n * p / 100) for p in 20/40/60/80,
    so every boundary is an observed value.
    """
    arr = np.sort(np.asarray(list(values), dtype=float))
    if arr.size == 0:
        return (0.0, 0.0, 0.0, 0.0)
    n = arr.size
    return tuple(float(arr[min(n - 1, (n * p) // 100)]) for p in QUINTILES)


def compute_boundaries(raws: Sequence[_RawRFM]) -> RFMBoundaries:
    return RFMBoundaries(
        recency=percentile_boundaries(r.recency_days for r in raws),
        frequency=percentile_boundaries(r.order_count for r in raws),
        monetary=percentile_boundaries(r.total_spent for r in raws),
    )


def _score_lower_is_better(value: float, bounds: Sequence[float]) -> int:
    for i, bound in enumerate(bounds):
        if value <= bound:
            return 5 - i
    return 1


def _score_higher_is_better(value: float, bounds: Sequence[float]) -> int:
    for i, bound in enumerate(reversed(bounds)):
        if value >= bound:
            return 5 - i
    return 1


# ==================== Segments ====================

def assign_segment(r: int, f: int, m: int) -> RFMSegment:
    """
    Decision table, first match wins.

    newCustomers (R>=4, F=1) sits behind potentialLoyalist (R>=4, F<=3) and
    is therefore never selected; the table order is kept as published.
    """
    if r >= 4 and f >= 4 and m >= 4:
        return RFMSegment.CHAMPIONS
    if r >= 3 and f >= 3 and m >= 3:
        return RFMSegment.LOYAL_CUSTOMERS
    if r >= 4 and f <= 3:
        return RFMSegment.POTENTIAL_LOYALIST
    if r >= 4 and f == 1:
        return RFMSegment.NEW_CUSTOMERS
    if r >= 3 and 2 <= f <= 3:
        return RFMSegment.PROMISING
    if r == 3 and f >= 3:
        return RFMSegment.NEEDS_ATTENTION
    if r == 2 and f >= 2:
        return RFMSegment.ABOUT_TO_SLEEP
    if r <= 2 and f >= 3 and m >= 3:
        return RFMSegment.AT_RISK
    if r == 1 and f >= 4 and m >= 4:
        return RFMSegment.CANT_LOSE_THEM
    if r <= 2 and f <= 2:
        return RFMSegment.HIBERNATING
    if r == 1 and f == 1:
        return RFMSegment.LOST
    return RFMSegment.OTHER


def _build_score(
    raw: _RawRFM,
    policy: RFMPolicy,
    boundaries: Optional[RFMBoundaries],
    now: datetime
) -> RFMScore:
    if policy == RFMPolicy.PERCENTILE:
        r = _score_lower_is_better(raw.recency_days, boundaries.recency)
        f = _score_higher_is_better(raw.order_count, boundaries.frequency)
        m = _score_higher_is_better(raw.total_spent, boundaries.monetary)
    else:
        r = score_recency(raw.recency_days)
        f = score_frequency(raw.order_count)
        m = score_monetary(raw.total_spent)

    return RFMScore(
        customer_id=raw.customer_id,
        recency_score=r,
        frequency_score=f,
        monetary_score=m,
        composite=f"{r}{f}{m}",
        segment=assign_segment(r, f, m),
        recency_days=raw.recency_days,
        order_count=raw.order_count,
        total_spent=raw.total_spent,
        last_updated=now,
    )


def compute_rfm(
    customer_id: str,
    orders: Sequence[Order],
    now: Optional[datetime] = None,
    policy: RFMPolicy = RFMPolicy.FIXED,
    boundaries: Optional[RFMBoundaries] = None
) -> Optional[RFMScore]:
    """
    Score one customer.

    Pure: identical orders, clock and policy always give the same score.

    Args:
        customer_id: Customer identifier
        orders: Non-cancelled orders for the customer
        now: Reference time (defaults to the current UTC time)
        policy: Bucketing policy
        boundaries: Population boundaries for the percentile policy; when
            omitted they are derived from this customer alone

    Returns:
        RFMScore, or None when the customer has no orders
    """
    now = coerce_utc(now) or utcnow()
    raw = _raw_rfm(customer_id, orders, now)
    if raw is None:
        return None
    if policy == RFMPolicy.PERCENTILE and boundaries is None:
        boundaries = compute_boundaries([raw])
    return _build_score(raw, policy, boundaries, now)


def group_by_segment(scores: Iterable[RFMScore]) -> Dict[RFMSegment, Set[str]]:
    """Segment -> customer ids; every segment key is present."""
    segments: Dict[RFMSegment, Set[str]] = {segment: set() for segment in RFMSegment}
    for score in scores:
        segments[score.segment].add(score.customer_id)
    return segments


def score_population(
    orders_by_customer: Dict[str, List[Order]],
    now: Optional[datetime] = None,
    policy: RFMPolicy = RFMPolicy.FIXED
) -> RFMReport:
    """
    Score every customer with at least one order in a single pass.

    Args:
        orders_by_customer: customer_id -> non-cancelled orders
        now: Reference time
        policy: Bucketing policy

    Returns:
        RFMReport with scores and a freshly built segment map
    """
    now = coerce_utc(now) or utcnow()
    raws = [
        raw for raw in (
            _raw_rfm(customer_id, orders, now)
            for customer_id, orders in orders_by_customer.items()
        )
        if raw is not None
    ]

    boundaries = compute_boundaries(raws) if policy == RFMPolicy.PERCENTILE and raws else None

    scores: Dict[str, RFMScore] = {}
    for raw in raws:
        try:
            scores[raw.customer_id] = _build_score(raw, policy, boundaries, now)
        except Exception as e:
            logger.error(f"RFM scoring failed for customer {raw.customer_id}: {e}")

    logger.info(f"Scored {len(scores)} customers with {policy.value} RFM policy")

    return RFMReport(
        policy=policy,
        scores=scores,
        segments=group_by_segment(scores.values()),
        computed_at=now,
        boundaries=boundaries,
    )
