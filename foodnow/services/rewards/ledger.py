"""
Customer Loyalty Ledger

Points are earned on delivered orders and rating bonuses and redeemed for
order discounts. Every balance change writes one row to
``reward_transactions`` (append-only) next to the cached balance in
``loyalty_accounts``:

    new_balance = previous_balance + amount     (earned, bonus)
    new_balance = previous_balance - amount     (redeemed)

Both writes happen inside one ``atomic()`` block, and the balance update is
conditional on the balance read at the start, so concurrent writers can
never lose an update or drive a balance negative.
"""

import logging
import math
from typing import Any, Iterable, Mapping, Optional, Sequence

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from foodnow.core.clock import Clock, ensure_aware, utcnow
from foodnow.core.config import Settings, get_settings
from foodnow.core.exceptions import (
    ConflictError,
    InsufficientBalance,
    NoQualifyingTier,
    ValidationFailed,
)
from foodnow.models import TransactionType
from foodnow.services.persistence import BasePersistenceProvider, Record
from foodnow.services.rewards.tiers import (
    DEFAULT_TIERS,
    FIRST_ORDER_BADGE,
    LIFETIME_BADGES,
    Badge,
    RedemptionTier,
    select_tier,
)

logger = logging.getLogger(__name__)

ACCOUNTS = "loyalty_accounts"
TRANSACTIONS = "reward_transactions"
BADGES = "customer_badges"

# Attempts at a balance write before a lost race is reported to the caller
MAX_WRITE_ATTEMPTS = 3


def balance_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(MAX_WRITE_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )


class LoyaltyService:
    """
    Earn and redeem loyalty points.

    Args:
        store: Persistence provider
        settings: Earn rate and multipliers (defaults to get_settings())
        tiers: Redemption tiers, lowest to highest
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: BasePersistenceProvider,
        settings: Optional[Settings] = None,
        tiers: Sequence[RedemptionTier] = DEFAULT_TIERS,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.tiers = tuple(tiers)
        self.clock = clock

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def get_account(self, account_id: str) -> Record:
        """Return the account, opening an empty one on first use."""
        account = await self.store.get(ACCOUNTS, account_id)
        if account is not None:
            return account

        try:
            account = await self.store.insert(ACCOUNTS, {
                "id": account_id,
                "current_points": 0,
                "lifetime_points": 0,
                "created_at": self.clock(),
                "updated_at": None,
            })
            logger.info(f"Opened loyalty account {account_id}")
            return account
        except ConflictError:
            # Opened concurrently
            return await self.store.get(ACCOUNTS, account_id)

    async def transactions(self, account_id: str, limit: Optional[int] = 50) -> list[Record]:
        """Ledger entries, newest first."""
        return await self.store.query(
            TRANSACTIONS,
            {"account_id": account_id},
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    async def badges(self, account_id: str) -> list[Record]:
        return await self.store.query(BADGES, {"account_id": account_id}, order_by="earned_at")

    def next_tier(self, current_points: int) -> Optional[RedemptionTier]:
        """The cheapest tier the account cannot redeem yet."""
        for tier in sorted(self.tiers, key=lambda t: t.points_required):
            if tier.points_required > current_points:
                return tier
        return None

    # =========================================================================
    # EARNING
    # =========================================================================

    def calculate_points(self, base_amount: float, multipliers: Iterable[float] = ()) -> int:
        """floor(amount / 100) * rate, each multiplier applied in turn, floored."""
        points: float = math.floor(base_amount / 100) * self.settings.loyalty_points_rate
        for multiplier in multipliers:
            points *= multiplier
        return math.floor(points)

    async def earn(
        self,
        account_id: str,
        order_id: Optional[str],
        base_amount: float,
        multipliers: Iterable[float] = (),
    ) -> int:
        """
        Grant points for spending ``base_amount``.

        Returns:
            Points granted (0 when the amount is below one point)
        """
        if base_amount < 0:
            raise ValidationFailed("Order amount cannot be negative", base_amount=base_amount)

        points = self.calculate_points(base_amount, multipliers)
        if points <= 0:
            logger.debug(f"No points for {account_id}: amount {base_amount} below threshold")
            return 0

        reference = f" for order #{order_id[:8]}" if order_id else ""
        await self._apply(
            account_id,
            delta=points,
            type=TransactionType.EARNED,
            category="points",
            description=f"Earned {points} points{reference}",
            order_id=order_id,
        )

        logger.info(f"Awarded {points} points to {account_id} (order={order_id})")
        return points

    async def award_bonus(
        self,
        account_id: str,
        points: int,
        description: str,
        order_id: Optional[str] = None,
    ) -> int:
        """Grant a fixed number of bonus points (e.g. for leaving a rating)."""
        if points <= 0:
            raise ValidationFailed("Bonus points must be positive", points=points)

        await self._apply(
            account_id,
            delta=points,
            type=TransactionType.BONUS,
            category="points",
            description=description,
            order_id=order_id,
        )

        logger.info(f"Bonus of {points} points to {account_id}: {description}")
        return points

    async def _is_first_order(self, account_id: str) -> bool:
        # The badge is written for every first delivery, even one worth 0 points
        badge = await self.store.get(BADGES, f"{account_id}:{FIRST_ORDER_BADGE.id}")
        return badge is None

    async def order_multipliers(
        self,
        order: Mapping[str, Any],
        first_order: Optional[bool] = None,
    ) -> list[float]:
        """Multipliers for a delivered order: first order, then weekend."""
        multipliers = []

        if first_order is None:
            first_order = await self._is_first_order(order["customer_id"])
        if first_order:
            multipliers.append(self.settings.loyalty_first_order_multiplier)

        delivered_at = order.get("delivered_at") or self.clock()
        if ensure_aware(delivered_at).weekday() >= 5:
            multipliers.append(self.settings.loyalty_weekend_multiplier)

        return multipliers

    async def earn_for_order(self, order: Mapping[str, Any]) -> int:
        """
        Accrue points for a delivered order, once.

        Returns:
            Points granted (0 if the order already earned points)
        """
        existing = await self.store.query(
            TRANSACTIONS,
            {"order_id": order["id"], "type": TransactionType.EARNED.value},
            limit=1,
        )
        if existing:
            logger.info(f"Order {order['id']} already earned points")
            return 0

        first_order = await self._is_first_order(order["customer_id"])
        multipliers = await self.order_multipliers(order, first_order)

        points = await self.earn(order["customer_id"], order["id"], order["total"], multipliers)

        if first_order:
            await self._award_badge(order["customer_id"], FIRST_ORDER_BADGE)

        return points

    # =========================================================================
    # REDEMPTION
    # =========================================================================

    async def redeem(self, account_id: str, points: int, order_id: Optional[str]) -> float:
        """
        Exchange points for a discount.

        The highest tier the redeemed amount reaches sets the rate:
        discount = min(points / 100 * pct, tier cap).

        Returns:
            The discount amount

        Raises:
            InsufficientBalance: More points requested than available
            NoQualifyingTier: Fewer points than the smallest tier needs
        """
        if points <= 0:
            raise ValidationFailed("Points to redeem must be positive", points=points)

        account = await self.get_account(account_id)
        if points > account["current_points"]:
            raise InsufficientBalance(requested=points, available=account["current_points"])

        tier = select_tier(points, self.tiers)
        if tier is None:
            minimum = min(t.points_required for t in self.tiers)
            raise NoQualifyingTier(
                f"Redeem at least {minimum} points",
                requested=points,
                minimum=minimum,
            )

        discount = round(tier.discount_for(points), 2)

        await self._apply(
            account_id,
            delta=-points,
            type=TransactionType.REDEEMED,
            category="discount",
            description=f"Redeemed {points} points for ₦{discount:,.2f} discount ({tier.name})",
            order_id=order_id,
            discount_amount=discount,
        )

        logger.info(f"{account_id} redeemed {points} points for {discount} ({tier.name})")
        return discount

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @balance_retry()
    async def _apply(
        self,
        account_id: str,
        delta: int,
        type: TransactionType,
        category: str,
        description: str,
        order_id: Optional[str],
        discount_amount: Optional[float] = None,
    ) -> Record:
        async with self.store.atomic():
            account = await self.get_account(account_id)
            previous = account["current_points"]
            new_balance = previous + delta

            if new_balance < 0:
                raise InsufficientBalance(requested=-delta, available=previous)

            lifetime = account["lifetime_points"] + (delta if delta > 0 else 0)
            now = self.clock()

            await self.store.update(
                ACCOUNTS,
                account_id,
                {"current_points": new_balance, "lifetime_points": lifetime, "updated_at": now},
                expected={"current_points": previous, "lifetime_points": account["lifetime_points"]},
            )

            entry = await self.store.insert(TRANSACTIONS, {
                "account_id": account_id,
                "type": type.value,
                "category": category,
                "amount": abs(delta),
                "description": description,
                "order_id": order_id,
                "previous_balance": previous,
                "new_balance": new_balance,
                "discount_amount": discount_amount,
                "created_at": now,
            })

            if delta > 0:
                for badge in LIFETIME_BADGES:
                    if lifetime >= badge.lifetime_points:
                        await self._award_badge(account_id, badge)

        return entry

    async def _award_badge(self, account_id: str, badge: Badge) -> None:
        badge_key = f"{account_id}:{badge.id}"
        if await self.store.get(BADGES, badge_key) is not None:
            return

        await self.store.insert(BADGES, {
            "id": badge_key,
            "account_id": account_id,
            "badge_id": badge.id,
            "name": badge.name,
            "earned_at": self.clock(),
        })
        logger.info(f"Badge '{badge.name}' awarded to {account_id}")
