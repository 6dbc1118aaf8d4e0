"""
Cohort analysis and retention tracking.

Customers are grouped by acquisition month (YYYY-MM), ISO week (YYYY-Www)
and acquisition source. Retention is the fraction of a month cohort still
active k months after the cohort start, for k in RETENTION_MONTHS.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Optional, Set

from customer_intel.core.records import coerce_utc, utcnow

logger = logging.getLogger(__name__)

RETENTION_MONTHS = (1, 2, 3, 6, 12)
DAYS_PER_MONTH = 30


class CohortKind(str, Enum):
    MONTH = "month"
    WEEK = "week"
    SOURCE = "source"


@dataclass
class Cohort:
    key: str
    kind: CohortKind
    members: Set[str] = field(default_factory=set)
    retention: Dict[str, float] = field(default_factory=dict)  # "month1" -> fraction
    revenue: float = 0.0
    conversions: int = 0

    @property
    def size(self) -> int:
        return len(self.members)


def month_key(dt: datetime) -> str:
    return f"{dt.year}-{dt.month:02d}"


def week_key(dt: datetime) -> str:
    iso_year, iso_week, _ = dt.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to 1 (cohort starts only)."""
    index = dt.year * 12 + (dt.month - 1) + months
    return dt.replace(year=index // 12, month=index % 12 + 1, day=1)


class CohortTracker:
    """
    Mutable cohort accumulator.

    The intelligence service builds a fresh tracker on every recompute pass,
    so membership is never carried over between passes.
    """

    def __init__(self):
        self.by_month: Dict[str, Cohort] = {}
        self.by_week: Dict[str, Cohort] = {}
        self.by_source: Dict[str, Cohort] = {}
        self._customer_keys: Dict[str, tuple] = {}

    def track(self, customer_id: str, acquired_at: datetime, source: Optional[str] = "direct") -> None:
        """Place a customer in its month, week and source cohorts (idempotent)."""
        acquired_at = coerce_utc(acquired_at)
        source = source or "direct"
        keys = (month_key(acquired_at), week_key(acquired_at), source)

        for table, kind, key in (
            (self.by_month, CohortKind.MONTH, keys[0]),
            (self.by_week, CohortKind.WEEK, keys[1]),
            (self.by_source, CohortKind.SOURCE, keys[2]),
        ):
            cohort = table.get(key)
            if cohort is None:
                cohort = Cohort(key=key, kind=kind)
                table[key] = cohort
            cohort.members.add(customer_id)

        self._customer_keys.setdefault(customer_id, keys)

    def add_revenue(self, customer_id: str, amount: float) -> None:
        """Accumulate revenue and a conversion into every cohort of the customer."""
        keys = self._customer_keys.get(customer_id)
        if keys is None:
            logger.debug(f"Revenue for untracked customer {customer_id} ignored")
            return
        for table, key in zip((self.by_month, self.by_week, self.by_source), keys):
            cohort = table[key]
            cohort.revenue += amount
            cohort.conversions += 1

    def compute_retention(self, last_seen: Mapping[str, datetime], now: Optional[datetime] = None) -> None:
        """
        Recompute retention for every month cohort.

        Args:
            last_seen: customer_id -> last activity time
            now: Reference time
        """
        now = coerce_utc(now) or utcnow()

        for key, cohort in self.by_month.items():
            year, month = (int(part) for part in key.split("-"))
            start = datetime(year, month, 1, tzinfo=timezone.utc)
            months_elapsed = int((now - start).days // DAYS_PER_MONTH)

            retention: Dict[str, float] = {}
            for k in RETENTION_MONTHS:
                if months_elapsed < k:
                    continue
                target = add_months(start, k)
                retained = sum(
                    1 for customer_id in cohort.members
                    if last_seen.get(customer_id) is not None
                    and coerce_utc(last_seen[customer_id]) >= target
                )
                retention[f"month{k}"] = retained / cohort.size if cohort.size else 0.0
            cohort.retention = retention

    def all_cohorts(self) -> Dict[CohortKind, Dict[str, Cohort]]:
        return {
            CohortKind.MONTH: self.by_month,
            CohortKind.WEEK: self.by_week,
            CohortKind.SOURCE: self.by_source,
        }
