"""
Order Service

Places orders and moves them through their lifecycle. ``transition`` is the
only way an order's status changes; routes, the auto-accept countdown and the
background worker all call it.

A transition:
    1. validates the change with the shared state machine
    2. checks the actor owns the order
    3. writes conditionally on the status it read (a lost race raises
       ConflictError and writes nothing)
    4. stamps the status timestamp and appends a tracking update
    5. runs best-effort side effects: customer notification, and on
       delivery the loyalty accrual and a rating reminder. Failures there
       are logged and never undo the transition.
"""

import logging
import random
import uuid
from datetime import timedelta
from typing import Any, Iterable, Mapping, Optional, Union

from foodnow.core.clock import Clock, utcnow
from foodnow.core.config import Settings, get_settings
from foodnow.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationFailed,
)
from foodnow.models import ActorRole, OrderStatus
from foodnow.services.notifications import BaseNotificationService
from foodnow.services.orders.state_machine import (
    STATUS_TIMESTAMPS,
    allowed_transitions,
    validate_transition,
)
from foodnow.services.persistence import BasePersistenceProvider, Record
from foodnow.services.rewards import LoyaltyService

logger = logging.getLogger(__name__)

ORDERS = "orders"
MENU_ITEMS = "menu_items"

# Statuses in which a rider can still be assigned
ASSIGNABLE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)


def generate_order_number(now_ms: int) -> str:
    """FN<epoch milliseconds><3 random digits>"""
    return f"FN{now_ms}{random.randint(0, 999):03d}"


def tracking_message(status: OrderStatus, actor: ActorRole, reason: Optional[str] = None) -> str:
    if status == OrderStatus.CANCELLED:
        return f"Order cancelled: {reason or 'Restaurant unavailable'}"
    return f"Order {status.value.replace('_', ' ')} by {actor.value}"


class OrderService:
    """
    Order placement and lifecycle.

    Args:
        store: Persistence provider
        notifications: Customer notification service (optional)
        loyalty: Loyalty ledger for delivery points and checkout discounts
        settings: Fees, delivery estimate, auto-accept worker switch
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: BasePersistenceProvider,
        notifications: Optional[BaseNotificationService] = None,
        loyalty: Optional[LoyaltyService] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.notifications = notifications
        self.loyalty = loyalty
        self.settings = settings or get_settings()
        self.clock = clock

    # =========================================================================
    # MENU
    # =========================================================================

    async def add_menu_item(
        self,
        restaurant_id: str,
        name: str,
        base_price: float,
        description: Optional[str] = None,
        is_available: bool = True,
    ) -> Record:
        if base_price < 0:
            raise ValidationFailed("Price cannot be negative", base_price=base_price)

        item = await self.store.insert(MENU_ITEMS, {
            "restaurant_id": restaurant_id,
            "name": name,
            "description": description,
            "base_price": round(base_price, 2),
            "is_available": is_available,
            "created_at": self.clock(),
        })
        logger.info(f"Menu item {item['id']} ({name}) added for restaurant {restaurant_id}")
        return item

    async def list_menu(self, restaurant_id: str, available_only: bool = False) -> list[Record]:
        filters: dict[str, Any] = {"restaurant_id": restaurant_id}
        if available_only:
            filters["is_available"] = True
        return await self.store.query(MENU_ITEMS, filters, order_by="name")

    # =========================================================================
    # PLACEMENT
    # =========================================================================

    async def _price_lines(self, restaurant_id: str, items: Iterable[Mapping[str, Any]]) -> list[dict]:
        lines = []
        for item in items:
            quantity = int(item.get("quantity", 1))
            if quantity < 1:
                raise ValidationFailed("Quantity must be at least 1", menu_item_id=item.get("menu_item_id"))

            menu_item = await self.store.get(MENU_ITEMS, item["menu_item_id"])
            if menu_item is None or menu_item["restaurant_id"] != restaurant_id:
                raise ValidationFailed(
                    "Menu item not found for this restaurant",
                    menu_item_id=item["menu_item_id"],
                )
            if not menu_item["is_available"]:
                raise ValidationFailed(f"{menu_item['name']} is currently unavailable", menu_item_id=menu_item["id"])

            lines.append({
                "menu_item_id": menu_item["id"],
                "name": menu_item["name"],
                "quantity": quantity,
                "unit_price": menu_item["base_price"],
                "total_price": round(menu_item["base_price"] * quantity, 2),
                "customizations": list(item.get("customizations") or []),
            })

        if not lines:
            raise ValidationFailed("An order needs at least one item")
        return lines

    async def create_order(
        self,
        customer_id: str,
        restaurant_id: str,
        items: Iterable[Mapping[str, Any]],
        delivery_address: Optional[Mapping[str, Any]] = None,
        delivery_fee: float = 0.0,
        payment_method: str = "card",
        special_instructions: Optional[str] = None,
        contact_phone: Optional[str] = None,
        contact_email: Optional[str] = None,
        redeem_points: Optional[int] = None,
    ) -> Record:
        """
        Place a pending order priced from the restaurant's menu.

        When ``redeem_points`` is given the points are redeemed in the same
        atomic block as the insert, and the discount is capped so the total
        never goes negative.
        """
        if delivery_fee < 0:
            raise ValidationFailed("Delivery fee cannot be negative", delivery_fee=delivery_fee)

        lines = await self._price_lines(restaurant_id, items)
        subtotal = round(sum(line["total_price"] for line in lines), 2)
        service_fee = round(self.settings.service_fee, 2)
        before_discount = round(subtotal + delivery_fee + service_fee, 2)

        now = self.clock()
        order_id = str(uuid.uuid4())

        async with self.store.atomic():
            discount = 0.0
            if redeem_points:
                if self.loyalty is None:
                    raise ValidationFailed("Points cannot be redeemed right now")
                discount = await self.loyalty.redeem(customer_id, redeem_points, order_id)
            discount = min(round(discount, 2), before_discount)

            order = await self.store.insert(ORDERS, {
                "id": order_id,
                "order_number": generate_order_number(int(now.timestamp() * 1000)),
                "customer_id": customer_id,
                "restaurant_id": restaurant_id,
                "rider_id": None,
                "items": lines,
                "delivery_address": dict(delivery_address) if delivery_address else None,
                "special_instructions": special_instructions,
                "contact_phone": contact_phone,
                "contact_email": contact_email,
                "subtotal": subtotal,
                "delivery_fee": round(delivery_fee, 2),
                "service_fee": service_fee,
                "discount": discount,
                "total": round(before_discount - discount, 2),
                "payment_method": payment_method,
                "payment_status": "pending",
                "status": OrderStatus.PENDING.value,
                "cancellation_reason": None,
                "tracking_updates": [{
                    "status": OrderStatus.PENDING.value,
                    "timestamp": now.isoformat(),
                    "message": "Order placed",
                    "updated_by": ActorRole.CUSTOMER.value,
                }],
                "created_at": now,
                "updated_at": now,
                "estimated_delivery_time": now + timedelta(minutes=self.settings.estimated_delivery_minutes),
                "confirmed_at": None,
                "started_preparing_at": None,
                "ready_at": None,
                "rider_assigned_at": None,
                "picked_up_at": None,
                "delivered_at": None,
                "cancelled_at": None,
            })

        logger.info(
            f"Order {order['order_number']} placed: customer={customer_id} "
            f"restaurant={restaurant_id} total={order['total']}"
        )

        if self.settings.auto_accept_worker_enabled:
            self._schedule_auto_accept(order)

        await self._notify_status(order)
        return order

    def _schedule_auto_accept(self, order: Mapping[str, Any]) -> None:
        """Queue the server-side auto-accept for when the window closes."""
        from foodnow.tasks import auto_accept_order

        try:
            auto_accept_order.apply_async(
                args=[order["id"]],
                countdown=self.settings.auto_accept_window_seconds,
            )
            logger.debug(f"Auto-accept scheduled for order {order['id']}")
        except Exception:
            logger.exception(f"Could not schedule auto-accept for order {order['id']}")

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, order_id: str) -> Record:
        order = await self.store.get(ORDERS, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    async def get_restaurant_order(self, order_id: str, restaurant_id: str) -> Record:
        """The order, if it belongs to ``restaurant_id``; NotFoundError otherwise."""
        order = await self.store.get(ORDERS, order_id)
        if order is None or order["restaurant_id"] != restaurant_id:
            raise NotFoundError("Order not found or access denied", order_id=order_id)
        return order

    async def list_restaurant_orders(
        self,
        restaurant_id: str,
        status: Optional[Union[OrderStatus, str]] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        filters: dict[str, Any] = {"restaurant_id": restaurant_id}
        if status is not None:
            filters["status"] = OrderStatus(status).value
        return await self.store.query(ORDERS, filters, order_by="created_at", descending=True, limit=limit)

    async def list_customer_orders(self, customer_id: str, limit: Optional[int] = None) -> list[Record]:
        return await self.store.query(
            ORDERS, {"customer_id": customer_id}, order_by="created_at", descending=True, limit=limit
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _check_ownership(self, order: Mapping[str, Any], actor: ActorRole, actor_id: Optional[str]) -> None:
        if actor_id is None or actor == ActorRole.DISPATCH:
            return

        owner = {
            ActorRole.CUSTOMER: order["customer_id"],
            ActorRole.RESTAURANT: order["restaurant_id"],
            ActorRole.RIDER: order.get("rider_id"),
        }[actor]

        if owner != actor_id:
            raise NotFoundError("Order not found or access denied", order_id=order["id"])

    async def transition(
        self,
        order: Union[str, Mapping[str, Any]],
        new_status: Union[OrderStatus, str],
        actor: Union[ActorRole, str],
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Record:
        """
        Move an order to ``new_status`` on behalf of ``actor``.

        Args:
            order: Order id, or an order record previously read. A record's
                status is the one the conditional write expects.
            new_status: Target status
            actor: customer, restaurant, rider or dispatch
            actor_id: The acting party's id; checked against the order
            reason: Required when cancelling
            message: Tracking update text (a default is generated)

        Returns:
            The updated order

        Raises:
            InvalidTransition: The lifecycle forbids the change, or a
                cancellation has no reason
            NotFoundError: Unknown order, or not owned by ``actor_id``
            ConflictError: The order changed since it was read
        """
        actor = ActorRole(actor)
        current = await self.get_order(order) if isinstance(order, str) else dict(order)
        current_status = OrderStatus(current["status"])

        self._check_ownership(current, actor, actor_id)
        validate_transition(current_status, new_status, actor)
        new_status = OrderStatus(new_status)

        if new_status == OrderStatus.CANCELLED and not (reason and reason.strip()):
            raise InvalidTransition(
                current=current_status.value,
                attempted=new_status.value,
                actor=actor.value,
                allowed=[s.value for s in allowed_transitions(current_status, actor)],
                message="A reason is required to cancel an order",
            )

        now = self.clock()
        tracking = list(current.get("tracking_updates") or [])
        tracking.append({
            "status": new_status.value,
            "timestamp": now.isoformat(),
            "message": message or tracking_message(new_status, actor, reason),
            "updated_by": actor.value,
        })

        patch: dict[str, Any] = {
            "status": new_status.value,
            "updated_at": now,
            STATUS_TIMESTAMPS[new_status]: now,
            "tracking_updates": tracking,
        }
        if new_status == OrderStatus.CANCELLED:
            patch["cancellation_reason"] = reason.strip()

        try:
            updated = await self.store.update(
                ORDERS,
                current["id"],
                patch,
                expected={"status": current_status.value},
            )
        except ConflictError:
            logger.warning(
                f"Order {current['id']} left {current_status.value} before "
                f"{actor.value} could move it to {new_status.value}"
            )
            raise

        logger.info(
            f"Order {updated['order_number']}: {current_status.value} -> "
            f"{new_status.value} by {actor.value}"
        )

        await self._after_transition(updated)
        return updated

    async def cancel_order(self, order_id: str, customer_id: str, reason: str) -> Record:
        return await self.transition(
            order_id, OrderStatus.CANCELLED, ActorRole.CUSTOMER, actor_id=customer_id, reason=reason
        )

    async def assign_rider(self, order_id: str, rider_id: str) -> Record:
        """
        Give an unassigned order to ``rider_id``.

        Raises:
            InvalidTransition: The order is not confirmed, preparing or ready
            ConflictError: Another rider took it first
        """
        order = await self.get_order(order_id)
        status = OrderStatus(order["status"])

        if status not in ASSIGNABLE_STATUSES:
            raise InvalidTransition(
                current=status.value,
                attempted="rider_assigned",
                actor=ActorRole.RIDER.value,
                allowed=[],
                message=f"Riders cannot accept an order that is {status.value}",
            )
        if order.get("rider_id"):
            raise ConflictError("Order already has a rider", order_id=order_id)

        now = self.clock()
        tracking = list(order.get("tracking_updates") or [])
        tracking.append({
            "status": status.value,
            "timestamp": now.isoformat(),
            "message": "Rider has been assigned to your order",
            "updated_by": ActorRole.RIDER.value,
        })

        updated = await self.store.update(
            ORDERS,
            order_id,
            {"rider_id": rider_id, "rider_assigned_at": now, "updated_at": now, "tracking_updates": tracking},
            expected={"rider_id": None, "status": status.value},
        )

        logger.info(f"Rider {rider_id} assigned to order {updated['order_number']}")
        return updated

    # =========================================================================
    # SIDE EFFECTS
    # =========================================================================

    async def _after_transition(self, order: Record) -> None:
        await self._notify_status(order)

        if order["status"] != OrderStatus.DELIVERED.value:
            return

        if self.loyalty is not None:
            try:
                await self.loyalty.earn_for_order(order)
            except Exception:
                logger.exception(f"Loyalty accrual failed for order {order['id']}; delivery kept")

        if self.notifications is not None:
            try:
                await self.notifications.send_rating_reminder(order)
            except Exception:
                logger.exception(f"Rating reminder failed for order {order['id']}")

    async def _notify_status(self, order: Record) -> None:
        if self.notifications is None:
            return
        try:
            result = await self.notifications.send_order_status_update(order)
            if not result.success:
                logger.warning(f"Status notification for order {order['id']} not sent: {result.error_message}")
        except Exception:
            logger.exception(f"Status notification failed for order {order['id']}")
