"""
Celery Tasks
Background tasks run by the worker processes.

auto_accept_order is the server-side backstop for the restaurant countdown:
scheduled when an order is placed, it confirms the order once the acceptance
window has passed if nobody acted on it first. It goes through the same
conditional transition as the consoles, so losing the race to a manual
accept or reject is harmless.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from foodnow.celery_worker import celery_app
from foodnow.core.clock import ensure_aware, utcnow
from foodnow.core.config import get_settings
from foodnow.core.exceptions import ConflictError, InvalidTransition, NetworkError
from foodnow.models import ActorRole, OrderStatus
from foodnow.services.notifications import get_notification_service
from foodnow.services.orders import OrderService
from foodnow.services.orders.countdown import AUTO_ACCEPT_MESSAGE
from foodnow.services.persistence import get_persistence_provider
from foodnow.services.rewards import LoyaltyService

logger = logging.getLogger(__name__)


async def _auto_accept(order_id: str) -> dict:
    settings = get_settings()
    store = get_persistence_provider()
    orders = OrderService(
        store,
        notifications=get_notification_service(),
        loyalty=LoyaltyService(store),
    )

    try:
        return await _auto_accept_with(orders, settings, order_id)
    finally:
        # Pooled connections belong to this event loop
        await store.close()


async def _auto_accept_with(orders: OrderService, settings, order_id: str) -> dict:
    order = await orders.get_order(order_id)
    if order["status"] != OrderStatus.PENDING.value:
        return {"success": True, "order_id": order_id, "action": "none", "status": order["status"]}

    elapsed = (utcnow() - ensure_aware(order["created_at"])).total_seconds()
    remaining = settings.auto_accept_window_seconds - int(elapsed)
    if remaining > 0:
        return {"success": False, "order_id": order_id, "action": "retry", "remaining": remaining}

    try:
        updated = await orders.transition(
            order,
            OrderStatus.CONFIRMED,
            ActorRole.RESTAURANT,
            message=AUTO_ACCEPT_MESSAGE.format(window=settings.auto_accept_window_seconds),
        )
    except (ConflictError, InvalidTransition) as exc:
        # Accepted or rejected by the restaurant in the meantime
        logger.info(f"Auto-accept skipped for order {order_id}: {exc}")
        return {"success": True, "order_id": order_id, "action": "none"}

    return {"success": True, "order_id": order_id, "action": "confirmed", "status": updated["status"]}


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(NetworkError,),
    retry_backoff=True
)
def auto_accept_order(self, order_id: str) -> dict:
    """
    Confirm a still-pending order whose acceptance window has closed.

    Args:
        order_id: Order to check

    Returns:
        dict: What the task did ("confirmed", "none" or "retry")
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: auto-accept check for order {order_id}")
    start_time = time.time()

    result = asyncio.run(_auto_accept(order_id))

    if result["action"] == "retry":
        # Scheduled early (clock skew); try again when the window closes
        raise self.retry(countdown=result["remaining"])

    result["task_id"] = task_id
    result["processing_time_seconds"] = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: order {order_id} -> {result['action']}")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
