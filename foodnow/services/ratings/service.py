"""
Ratings & Reviews

Customers rate the restaurant and the rider of a delivered order, once each.
Every accepted rating refreshes the target's cached aggregate in
``rating_aggregates`` and earns the customer a small loyalty bonus.

Visibility:
    - Public summary: average, count, distribution, category averages, trend
    - Detailed list: the target's own view, with anonymous reviewers masked
    - Hidden (moderated) ratings never count toward any figure
"""

import logging
import math
from typing import Any, Mapping, Optional, Union

from foodnow.core.clock import Clock, utcnow
from foodnow.core.config import Settings, get_settings
from foodnow.core.exceptions import (
    ConflictError,
    DuplicateRating,
    NotFoundError,
    RatingNotAllowed,
    ValidationFailed,
)
from foodnow.models import OrderStatus, RatingTarget
from foodnow.services.persistence import BasePersistenceProvider, Record
from foodnow.services.rewards import LoyaltyService

logger = logging.getLogger(__name__)

RATINGS = "ratings"
AGGREGATES = "rating_aggregates"

CATEGORIES = {
    RatingTarget.RESTAURANT: ("food_quality", "packaging", "preparation_time"),
    RatingTarget.RIDER: ("timeliness", "communication", "professionalism"),
}

# Trend compares the newest quarter of ratings against the rest
TREND_MIN_RATINGS = 10
TREND_RECENT_SHARE = 0.25
TREND_THRESHOLD = 0.2


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def category_averages(ratings: list[Mapping[str, Any]], target_type: RatingTarget) -> dict[str, float]:
    averages = {}
    for category in CATEGORIES[target_type]:
        scores = [
            r["categories"][category]
            for r in ratings
            if r.get("categories") and r["categories"].get(category) is not None
        ]
        if scores:
            averages[category] = round(_average(scores), 1)
    return averages


def rating_trend(ratings_newest_first: list[Mapping[str, Any]]) -> str:
    """'improving', 'declining' or 'stable'."""
    if len(ratings_newest_first) < TREND_MIN_RATINGS:
        return "stable"

    recent_count = math.ceil(len(ratings_newest_first) * TREND_RECENT_SHARE)
    recent = [r["score"] for r in ratings_newest_first[:recent_count]]
    older = [r["score"] for r in ratings_newest_first[recent_count:]]

    difference = _average(recent) - _average(older)
    if difference > TREND_THRESHOLD:
        return "improving"
    if difference < -TREND_THRESHOLD:
        return "declining"
    return "stable"


class RatingService:
    """
    Submit, summarize and moderate ratings.

    Args:
        store: Persistence provider
        loyalty: Ledger used for the rating bonus (optional)
        settings: Bonus amounts (defaults to get_settings())
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: BasePersistenceProvider,
        loyalty: Optional[LoyaltyService] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.loyalty = loyalty
        self.settings = settings or get_settings()
        self.clock = clock

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def check_eligibility(
        self,
        customer_id: str,
        order_id: str,
        target_type: RatingTarget,
        target_id: str,
    ) -> Record:
        """
        Return the order if ``customer_id`` may rate ``target_id`` on it.

        Raises:
            RatingNotAllowed: Unknown order, someone else's order, not yet
                delivered, or the target did not serve this order
        """
        order = await self.store.get("orders", order_id)

        if order is None or order["customer_id"] != customer_id:
            raise RatingNotAllowed("Order not found for this customer", order_id=order_id)

        if order["status"] != OrderStatus.DELIVERED.value:
            raise RatingNotAllowed(
                "Only delivered orders can be rated",
                order_id=order_id,
                status=order["status"],
            )

        served_by = order["restaurant_id"] if target_type == RatingTarget.RESTAURANT else order.get("rider_id")
        if served_by != target_id:
            raise RatingNotAllowed(
                f"This {target_type.value} did not serve the order",
                order_id=order_id,
                target_id=target_id,
            )

        return order

    def _validate(self, target_type: RatingTarget, score: int, categories: Optional[Mapping[str, int]]) -> None:
        if not 1 <= score <= 5:
            raise ValidationFailed("Score must be between 1 and 5", score=score)

        for name, value in (categories or {}).items():
            if name not in CATEGORIES[target_type]:
                raise ValidationFailed(
                    f"Unknown {target_type.value} rating category: {name}",
                    allowed=list(CATEGORIES[target_type]),
                )
            if not 1 <= value <= 5:
                raise ValidationFailed(f"Category {name} must be between 1 and 5", category=name, score=value)

    async def submit_rating(
        self,
        customer_id: str,
        order_id: str,
        target_type: Union[RatingTarget, str],
        target_id: str,
        score: int,
        comment: Optional[str] = None,
        categories: Optional[Mapping[str, int]] = None,
        is_anonymous: bool = False,
    ) -> Record:
        """
        Store a rating and refresh the target's aggregate.

        Raises:
            RatingNotAllowed: See ``check_eligibility``; nothing is written
            DuplicateRating: The customer already rated this target for the order
            ValidationFailed: Score or category out of range
        """
        target_type = RatingTarget(target_type)
        self._validate(target_type, score, categories)

        async with self.store.atomic():
            await self.check_eligibility(customer_id, order_id, target_type, target_id)

            existing = await self.store.query(RATINGS, {
                "customer_id": customer_id,
                "order_id": order_id,
                "target_type": target_type.value,
                "target_id": target_id,
            }, limit=1)
            if existing:
                raise DuplicateRating(
                    f"Order already has a {target_type.value} rating from this customer",
                    rating_id=existing[0]["id"],
                )

            try:
                rating = await self.store.insert(RATINGS, {
                    "order_id": order_id,
                    "customer_id": customer_id,
                    "target_type": target_type.value,
                    "target_id": target_id,
                    "score": score,
                    "comment": comment,
                    "categories": dict(categories) if categories else None,
                    "is_anonymous": is_anonymous,
                    "is_hidden": False,
                    "hidden_reason": None,
                    "moderated_by": None,
                    "created_at": self.clock(),
                    "updated_at": None,
                })
            except ConflictError as exc:
                raise DuplicateRating(
                    f"Order already has a {target_type.value} rating from this customer"
                ) from exc

            await self.refresh_aggregate(target_type, target_id)

        logger.info(
            f"Rating {rating['id']} submitted: {target_type.value} {target_id} "
            f"scored {score} on order {order_id}"
        )

        await self._award_rating_bonus(customer_id, order_id, target_type)
        return rating

    async def _award_rating_bonus(self, customer_id: str, order_id: str, target_type: RatingTarget) -> None:
        if self.loyalty is None:
            return

        points = (
            self.settings.restaurant_rating_bonus_points
            if target_type == RatingTarget.RESTAURANT
            else self.settings.rider_rating_bonus_points
        )
        try:
            await self.loyalty.award_bonus(
                customer_id,
                points,
                description=f"Bonus for rating your {target_type.value}",
                order_id=order_id,
            )
        except Exception:
            logger.exception(f"Rating bonus failed for {customer_id} (order {order_id}); rating kept")

    # =========================================================================
    # AGGREGATES
    # =========================================================================

    async def _visible_ratings(self, target_type: RatingTarget, target_id: str) -> list[Record]:
        return await self.store.query(
            RATINGS,
            {"target_type": target_type.value, "target_id": target_id, "is_hidden": False},
            order_by="created_at",
            descending=True,
        )

    async def refresh_aggregate(self, target_type: Union[RatingTarget, str], target_id: str) -> Record:
        """Recompute and store the cached average, count and category averages."""
        target_type = RatingTarget(target_type)
        ratings = await self._visible_ratings(target_type, target_id)
        key = f"{target_type.value}:{target_id}"

        figures = {
            "average": round(_average([r["score"] for r in ratings]), 1),
            "total": len(ratings),
            "category_averages": category_averages(ratings, target_type),
            "updated_at": self.clock(),
        }

        if await self.store.get(AGGREGATES, key) is None:
            aggregate = await self.store.insert(AGGREGATES, {
                "id": key,
                "target_type": target_type.value,
                "target_id": target_id,
                **figures,
            })
        else:
            aggregate = await self.store.update(AGGREGATES, key, figures)

        logger.debug(f"Aggregate for {key}: {figures['average']} over {figures['total']} ratings")
        return aggregate

    async def get_summary(self, target_type: Union[RatingTarget, str], target_id: str) -> dict:
        """Public rating figures for a restaurant or rider."""
        target_type = RatingTarget(target_type)
        ratings = await self._visible_ratings(target_type, target_id)

        distribution = {score: 0 for score in range(1, 6)}
        for rating in ratings:
            distribution[rating["score"]] += 1

        return {
            "target_type": target_type.value,
            "target_id": target_id,
            "average": round(_average([r["score"] for r in ratings]), 1),
            "total": len(ratings),
            "distribution": distribution,
            "category_averages": category_averages(ratings, target_type),
            "trend": rating_trend(ratings),
        }

    # =========================================================================
    # LISTINGS
    # =========================================================================

    async def list_ratings(self, target_type: Union[RatingTarget, str], target_id: str) -> list[Record]:
        """Detailed ratings for the target's own dashboard, newest first."""
        ratings = await self._visible_ratings(RatingTarget(target_type), target_id)
        for rating in ratings:
            if rating.get("is_anonymous"):
                rating["customer_id"] = None
        return ratings

    async def customer_history(self, customer_id: str) -> list[Record]:
        return await self.store.query(
            RATINGS,
            {"customer_id": customer_id},
            order_by="created_at",
            descending=True,
        )

    # =========================================================================
    # MODERATION
    # =========================================================================

    async def flag_rating(self, rating_id: str, reason: str, admin_id: str) -> Record:
        """Hide a rating from every figure and record who moderated it."""
        if not reason or not reason.strip():
            raise ValidationFailed("A reason is required to hide a rating")

        async with self.store.atomic():
            rating = await self.store.get(RATINGS, rating_id)
            if rating is None:
                raise NotFoundError(f"Rating {rating_id} not found", rating_id=rating_id)

            rating = await self.store.update(RATINGS, rating_id, {
                "is_hidden": True,
                "hidden_reason": reason.strip(),
                "moderated_by": admin_id,
                "updated_at": self.clock(),
            })
            await self.refresh_aggregate(rating["target_type"], rating["target_id"])

        logger.info(f"Rating {rating_id} hidden by {admin_id}: {reason}")
        return rating
