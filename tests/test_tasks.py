from foodnow.core.clock import utcnow
from foodnow.tasks import _auto_accept_with, health_check


async def test_overdue_order_is_confirmed(place_order, orders, settings):
    order = await place_order()  # placed at the pinned clock, long ago

    result = await _auto_accept_with(orders, settings, order["id"])

    assert result["action"] == "confirmed"
    assert (await orders.get_order(order["id"]))["status"] == "confirmed"


async def test_handled_order_is_left_alone(place_order, orders, settings):
    order = await place_order()
    await orders.transition(order["id"], "cancelled", "restaurant", reason="Closed early")

    result = await _auto_accept_with(orders, settings, order["id"])

    assert result["action"] == "none"
    assert (await orders.get_order(order["id"]))["status"] == "cancelled"


async def test_early_run_asks_for_retry(store, orders, settings):
    store.seed("orders", {"id": "fresh", "status": "pending", "created_at": utcnow()})

    result = await _auto_accept_with(orders, settings, "fresh")

    assert result["action"] == "retry"
    assert 0 < result["remaining"] <= settings.auto_accept_window_seconds


def test_health_check_task():
    assert health_check.run()["status"] == "healthy"
