"""
Loyalty rewards: points ledger, redemption tiers and badges.
"""

from foodnow.services.rewards.ledger import LoyaltyService
from foodnow.services.rewards.tiers import (
    DEFAULT_TIERS,
    LIFETIME_BADGES,
    RedemptionTier,
    select_tier,
)

__all__ = [
    "LoyaltyService",
    "RedemptionTier",
    "DEFAULT_TIERS",
    "LIFETIME_BADGES",
    "select_tier",
]
