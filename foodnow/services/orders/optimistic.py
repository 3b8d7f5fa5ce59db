"""
Optimistic order view for operator consoles.

A console shows the requested status immediately and reconciles when the
write finishes: the stored order replaces the local copy on success, and the
previous copy comes back on failure.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from foodnow.models import ActorRole, OrderStatus
from foodnow.services.persistence import Record

logger = logging.getLogger(__name__)


class UpdateState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class PendingUpdate:
    order_id: str
    previous: Record
    requested_status: str
    state: UpdateState = UpdateState.PENDING
    error: Optional[str] = None


@dataclass
class OptimisticOrderView:
    """
    Local copies of orders plus the in-flight update for each.

    Args:
        orders: OrderService used to perform the real transition
    """
    orders: Any
    local: dict[str, Record] = field(default_factory=dict)
    updates: dict[str, PendingUpdate] = field(default_factory=dict)

    def load(self, *orders: Mapping[str, Any]) -> None:
        for order in orders:
            self.local[order["id"]] = dict(order)

    def status_of(self, order_id: str) -> Optional[str]:
        order = self.local.get(order_id)
        return order["status"] if order else None

    async def change_status(
        self,
        order_id: str,
        new_status: Union[OrderStatus, str],
        actor: Union[ActorRole, str],
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PendingUpdate:
        """
        Show ``new_status`` locally, run the transition, then reconcile.

        The returned update is ``confirmed`` or ``failed``; the error message
        of a failed update is kept on it for display.
        """
        previous = self.local[order_id]
        requested = OrderStatus(new_status).value

        update = PendingUpdate(order_id=order_id, previous=dict(previous), requested_status=requested)
        self.updates[order_id] = update
        self.local[order_id] = {**previous, "status": requested}

        try:
            stored = await self.orders.transition(
                previous, requested, actor, actor_id=actor_id, reason=reason
            )
        except Exception as exc:
            self.local[order_id] = update.previous
            update.state = UpdateState.FAILED
            update.error = getattr(exc, "message", str(exc))
            logger.info(f"Rolled back order {order_id} to {previous['status']}: {update.error}")
            return update

        self.local[order_id] = stored
        update.state = UpdateState.CONFIRMED
        return update
