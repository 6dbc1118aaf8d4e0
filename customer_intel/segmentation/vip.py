"""VIP tier classification (spend OR order-count thresholds, highest tier first)."""

from dataclasses import dataclass
from enum import Enum
from typing import List


class VIPTier(str, Enum):
    PLATINUM = "platinum"
    GOLD = "gold"
    SILVER = "silver"
    BRONZE = "bronze"
    NONE = "none"


@dataclass(frozen=True)
class VIPTierRule:
    tier: VIPTier
    min_spent: float
    min_orders: int
    discount_percentage: int


VIP_TIER_RULES: List[VIPTierRule] = [
    VIPTierRule(VIPTier.PLATINUM, min_spent=10000, min_orders=15, discount_percentage=20),
    VIPTierRule(VIPTier.GOLD, min_spent=5000, min_orders=8, discount_percentage=15),
    VIPTierRule(VIPTier.SILVER, min_spent=2000, min_orders=4, discount_percentage=10),
    VIPTierRule(VIPTier.BRONZE, min_spent=500, min_orders=2, discount_percentage=5),
]


def vip_tier(total_spent: float, order_count: int) -> VIPTier:
    """First tier whose spend or order threshold is reached."""
    for rule in VIP_TIER_RULES:
        if total_spent >= rule.min_spent or order_count >= rule.min_orders:
            return rule.tier
    return VIPTier.NONE
