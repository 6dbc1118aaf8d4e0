"""
Customer Segmentation

Rule-based behavioural, value and engagement segments plus VIP tiers.
RFM and LTV segments live in customer_intel.scoring.
"""

from customer_intel.segmentation.behavioral import (
    BehavioralSegment,
    CustomerActivitySummary,
    EngagementSegment,
    SegmentReport,
    ValueSegment,
    segment_customers,
)
from customer_intel.segmentation.vip import VIP_TIER_RULES, VIPTier, vip_tier

__all__ = [
    "BehavioralSegment",
    "CustomerActivitySummary",
    "EngagementSegment",
    "SegmentReport",
    "ValueSegment",
    "segment_customers",
    "VIP_TIER_RULES",
    "VIPTier",
    "vip_tier",
]
