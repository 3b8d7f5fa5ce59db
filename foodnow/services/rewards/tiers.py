"""
Redemption tiers and customer badges.
"""

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class RedemptionTier:
    """
    A discount band unlocked by redeeming at least ``points_required`` points.

    Attributes:
        name: Display name ("Bronze", "Silver", "Gold")
        points_required: Minimum points in one redemption
        discount_percentage: Percent of (points / 100) given as discount
        max_discount_amount: Cap on the discount, in currency units
    """
    name: str
    points_required: int
    discount_percentage: float
    max_discount_amount: float

    def discount_for(self, points: int) -> float:
        return min(points / 100 * self.discount_percentage, self.max_discount_amount)


DEFAULT_TIERS: tuple[RedemptionTier, ...] = (
    RedemptionTier("Bronze", 100, 5, 500),
    RedemptionTier("Silver", 500, 10, 1000),
    RedemptionTier("Gold", 1000, 15, 2000),
)


def select_tier(points: int, tiers: Sequence[RedemptionTier] = DEFAULT_TIERS) -> Optional[RedemptionTier]:
    """Highest tier whose threshold ``points`` reaches, or None."""
    qualifying = [tier for tier in tiers if tier.points_required <= points]
    if not qualifying:
        return None
    return max(qualifying, key=lambda tier: tier.points_required)


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str
    lifetime_points: Optional[int] = None


FIRST_ORDER_BADGE = Badge("first_order", "First Order", "Completed your first order")

LIFETIME_BADGES: tuple[Badge, ...] = (
    Badge("loyal_customer", "Loyal Customer", "Earned 500 points", lifetime_points=500),
    Badge("vip_customer", "VIP Customer", "Earned 1000 points", lifetime_points=1000),
)
