"""
Scoring Engine

RFM and LTV scoring from authoritative order history, plus cohort tracking.

Usage:
    from customer_intel.scoring import RFMPolicy, score_population, score_ltv_population

    rfm = score_population(orders_by_customer, policy=RFMPolicy.FIXED)
    ltv = score_ltv_population(orders_by_customer)
"""

from customer_intel.scoring.cohorts import Cohort, CohortKind, CohortTracker
from customer_intel.scoring.ltv import (
    LTVRecord,
    LTVReport,
    LTVSegment,
    compute_ltv,
    score_ltv_population,
    segment_ltv,
)
from customer_intel.scoring.rfm import (
    RFMBoundaries,
    RFMPolicy,
    RFMReport,
    RFMScore,
    RFMSegment,
    assign_segment,
    compute_rfm,
    percentile_boundaries,
    score_population,
)

__all__ = [
    "Cohort",
    "CohortKind",
    "CohortTracker",
    "LTVRecord",
    "LTVReport",
    "LTVSegment",
    "compute_ltv",
    "score_ltv_population",
    "segment_ltv",
    "RFMBoundaries",
    "RFMPolicy",
    "RFMReport",
    "RFMScore",
    "RFMSegment",
    "assign_segment",
    "compute_rfm",
    "percentile_boundaries",
    "score_population",
]
