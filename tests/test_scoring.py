"""
Unit Tests for Customer Scoring

Tests:
- RFM fixed thresholds, segment table and percentile policy
- LTV projection, health score bounds and segment partition
- Cohort keys and month-k retention
"""

from datetime import datetime, timedelta, timezone

import pytest

from customer_intel.core.records import Order
from customer_intel.scoring.cohorts import CohortKind, CohortTracker, add_months, month_key, week_key
from customer_intel.scoring.ltv import LTVSegment, compute_ltv, score_ltv_population
from customer_intel.scoring.rfm import (
    RFMPolicy,
    RFMSegment,
    assign_segment,
    compute_rfm,
    percentile_boundaries,
    score_frequency,
    score_monetary,
    score_population,
    score_recency,
)

NOW = datetime(2025, 6, 18, 12, 0, tzinfo=timezone.utc)


def order(customer_id, amount, days_ago):
    return Order(customer_id=customer_id, amount=amount, placed_at=NOW - timedelta(days=days_ago))


class TestRFMScoring:
    """Test fixed-threshold RFM scoring"""

    def test_recent_two_order_customer(self):
        """Orders of 200 (5 days ago) and 300 (40 days ago) score 524"""
        score = compute_rfm("c1", [order("c1", 200, 5), order("c1", 300, 40)], now=NOW)

        assert (score.recency_score, score.frequency_score, score.monetary_score) == (5, 2, 4)
        assert score.composite == "524"
        assert score.segment == RFMSegment.POTENTIAL_LOYALIST
        assert score.total_spent == 500
        assert score.order_count == 2

    def test_no_orders_returns_none(self):
        assert compute_rfm("c1", [], now=NOW) is None

    def test_scoring_is_deterministic(self):
        orders = [order("c1", 80, 12), order("c1", 45, 70), order("c1", 310, 3)]
        assert compute_rfm("c1", orders, now=NOW) == compute_rfm("c1", list(reversed(orders)), now=NOW)

    @pytest.mark.parametrize("days,expected", [(0, 5), (7, 5), (8, 4), (30, 4), (60, 3), (90, 2), (91, 1)])
    def test_recency_thresholds(self, days, expected):
        assert score_recency(days) == expected

    @pytest.mark.parametrize("count,expected", [(1, 1), (2, 2), (5, 3), (10, 4), (20, 5)])
    def test_frequency_thresholds(self, count, expected):
        assert score_frequency(count) == expected

    @pytest.mark.parametrize("total,expected", [(49.99, 1), (50, 2), (200, 3), (500, 4), (1000, 5)])
    def test_monetary_thresholds(self, total, expected):
        assert score_monetary(total) == expected


class TestRFMSegments:
    """Test the first-match segment table"""

    @pytest.mark.parametrize("rfm,expected", [
        ((5, 5, 5), RFMSegment.CHAMPIONS),
        ((3, 3, 3), RFMSegment.LOYAL_CUSTOMERS),
        ((4, 1, 1), RFMSegment.POTENTIAL_LOYALIST),
        ((3, 2, 1), RFMSegment.PROMISING),
        ((3, 4, 1), RFMSegment.NEEDS_ATTENTION),
        ((2, 2, 5), RFMSegment.ABOUT_TO_SLEEP),
        ((1, 3, 3), RFMSegment.AT_RISK),
        ((1, 1, 1), RFMSegment.HIBERNATING),
        ((1, 3, 1), RFMSegment.OTHER),
    ])
    def test_assign_segment(self, rfm, expected):
        assert assign_segment(*rfm) == expected

    def test_first_time_recent_buyer_is_potential_loyalist(self):
        """R>=4, F=1 is caught by potentialLoyalist before newCustomers"""
        assert assign_segment(5, 1, 3) == RFMSegment.POTENTIAL_LOYALIST

    def test_population_segments_partition_customers(self):
        orders_by_customer = {
            "a": [order("a", 1200, 2)] * 20,
            "b": [order("b", 30, 200)],
            "c": [order("c", 200, 5), order("c", 300, 40)],
            "empty": [],
        }
        report = score_population(orders_by_customer, now=NOW)

        assert set(report.scores) == {"a", "b", "c"}
        assert set(report.segments) == set(RFMSegment)
        members = [cid for segment in report.segments.values() for cid in segment]
        assert sorted(members) == ["a", "b", "c"]
        assert report.segment_of("a") == RFMSegment.CHAMPIONS
        assert report.segment_of("empty") is None


class TestPercentilePolicy:
    """Test population quintile scoring"""

    def test_boundaries_are_observed_values(self):
        assert percentile_boundaries([5, 1, 4, 2, 3]) == (2.0, 3.0, 4.0, 5.0)

    def test_empty_population_boundaries(self):
        assert percentile_boundaries([]) == (0.0, 0.0, 0.0, 0.0)

    def test_population_scored_against_quintiles(self):
        orders_by_customer = {
            f"c{i}": [order(f"c{i}", 100 * i, 10 * i)]
            for i in range(1, 6)
        }
        report = score_population(orders_by_customer, now=NOW, policy=RFMPolicy.PERCENTILE)

        assert report.policy == RFMPolicy.PERCENTILE
        assert report.boundaries.monetary == (200.0, 300.0, 400.0, 500.0)
        assert report.scores["c5"].monetary_score == 5
        assert report.scores["c1"].monetary_score == 1
        assert report.scores["c1"].recency_score == 5
        assert report.scores["c5"].recency_score == 2


class TestLTV:
    """Test lifetime value projection"""

    def test_single_order_included(self):
        record = compute_ltv("c1", [order("c1", 100, 10)], now=NOW)

        assert record.lifespan_months == 0
        assert record.purchase_frequency == 1
        assert record.predicted_ltv == pytest.approx(1200)
        assert record.health_score == pytest.approx(0.4 * 80 + 0.3 * 20 + 0.3 * 10)

    def test_frequency_uses_lifespan_months(self):
        orders = [order("c1", 100, 60), order("c1", 100, 30), order("c1", 100, 0)]
        record = compute_ltv("c1", orders, now=NOW)

        assert record.lifespan_months == pytest.approx(2)
        assert record.purchase_frequency == pytest.approx(1.5)
        assert record.predicted_ltv == pytest.approx(100 * 1.5 * 12)

    def test_no_orders_returns_none(self):
        assert compute_ltv("c1", [], now=NOW) is None

    @pytest.mark.parametrize("amount,days_ago", [(0.0, 0), (1_000_000.0, 0), (5.0, 3650)])
    def test_health_score_bounded(self, amount, days_ago):
        record = compute_ltv("c1", [order("c1", amount, days_ago)] * 50, now=NOW)
        assert 0 <= record.health_score <= 100
        assert record.predicted_ltv >= 0

    def test_segments_partition_population(self):
        orders_by_customer = {
            f"c{i:02d}": [order(f"c{i:02d}", 10 * (i + 1), 5 if i % 2 else 120)]
            for i in range(10)
        }
        report = score_ltv_population(orders_by_customer, now=NOW)

        assert report.total_customers == 10
        assert len(report.segments[LTVSegment.HIGH]) == 2
        assert len(report.segments[LTVSegment.MEDIUM]) == 3
        assert report.segments[LTVSegment.HIGH] == {"c09", "c08"}

        members = [cid for segment in report.segments.values() for cid in segment]
        assert sorted(members) == sorted(orders_by_customer)
        for cid in report.segments[LTVSegment.CHURNED]:
            assert report.records[cid].days_since_last_purchase >= 90
        for cid in report.segments[LTVSegment.LOW]:
            assert report.records[cid].days_since_last_purchase < 90


class TestCohorts:
    """Test cohort grouping and retention"""

    def test_cohort_keys(self):
        assert month_key(NOW) == "2025-06"
        assert week_key(NOW) == "2025-W25"

    def test_add_months_crosses_year(self):
        result = add_months(datetime(2024, 11, 15, tzinfo=timezone.utc), 3)
        assert (result.year, result.month, result.day) == (2025, 2, 1)

    def test_members_and_revenue(self):
        tracker = CohortTracker()
        tracker.track("a", datetime(2025, 1, 10, tzinfo=timezone.utc), "google")
        tracker.track("b", datetime(2025, 1, 20, tzinfo=timezone.utc), None)
        tracker.add_revenue("a", 120.0)
        tracker.add_revenue("ghost", 999.0)

        cohorts = tracker.all_cohorts()
        january = cohorts[CohortKind.MONTH]["2025-01"]
        assert january.size == 2
        assert january.revenue == 120.0
        assert january.conversions == 1
        assert set(cohorts[CohortKind.SOURCE]) == {"google", "direct"}

    def test_retention_counts_elapsed_months_only(self):
        tracker = CohortTracker()
        tracker.track("a", datetime(2025, 1, 10, tzinfo=timezone.utc))
        tracker.track("b", datetime(2025, 1, 20, tzinfo=timezone.utc))

        tracker.compute_retention({
            "a": datetime(2025, 3, 5, tzinfo=timezone.utc),
            "b": datetime(2025, 1, 25, tzinfo=timezone.utc),
        }, now=NOW)

        retention = tracker.by_month["2025-01"].retention
        assert retention == {"month1": 0.5, "month2": 0.5, "month3": 0.0}
