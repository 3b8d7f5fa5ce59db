import asyncio
from datetime import timedelta

import pytest

from foodnow.core.exceptions import ConflictError, ValidationFailed
from foodnow.models import OrderStatus
from foodnow.services.orders import AutoAcceptCountdown, CountdownState, OrderQueueSession
from foodnow.services.orders.countdown import AUTO_ACCEPT_MESSAGE

from conftest import CUSTOMER_ID, NOW, RESTAURANT_ID


class RecordingOrders:
    """Stands in for OrderService; records every transition."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def transition(self, order, new_status, actor, **kwargs):
        self.calls.append((OrderStatus(new_status), kwargs))
        if self.error is not None:
            raise self.error
        return {**order, "status": OrderStatus(new_status).value}


def _order(age_seconds: float, status: str = "pending") -> dict:
    return {
        "id": "order-1",
        "restaurant_id": RESTAURANT_ID,
        "status": status,
        "created_at": NOW - timedelta(seconds=age_seconds),
    }


def _countdown(order, orders, clock, **kwargs) -> AutoAcceptCountdown:
    kwargs.setdefault("tick_seconds", 60)
    return AutoAcceptCountdown(order, orders, window_seconds=30, clock=clock, **kwargs)


async def test_resumes_from_order_age(clock):
    countdown = _countdown(_order(25), RecordingOrders(), clock)

    await countdown.start()

    assert countdown.compute_remaining() == 5
    assert countdown.remaining == 5
    assert countdown.state == CountdownState.RUNNING
    countdown.dispose()


async def test_expired_window_accepts_during_start(clock):
    orders = RecordingOrders()
    countdown = _countdown(_order(31), orders, clock)

    await countdown.start()

    assert countdown.state == CountdownState.CONCLUDED
    assert countdown.remaining == 0
    assert countdown.result.action == "timeout"
    assert countdown.result.ok
    [(status, kwargs)] = orders.calls
    assert status == OrderStatus.CONFIRMED
    assert kwargs["message"] == AUTO_ACCEPT_MESSAGE.format(window=30)


async def test_ticks_down_then_auto_accepts(clock):
    orders = RecordingOrders()
    ticks = []
    done = asyncio.Event()

    countdown = _countdown(
        _order(27), orders, clock,
        tick_seconds=0.01,
        on_tick=lambda order_id, remaining: ticks.append(remaining),
        on_concluded=lambda result: done.set(),
    )
    await countdown.start()
    await asyncio.wait_for(done.wait(), timeout=2)

    assert ticks == [2, 1, 0]
    assert countdown.result.action == "timeout"
    assert len(orders.calls) == 1


async def test_second_action_is_a_noop(clock):
    orders = RecordingOrders()
    countdown = _countdown(_order(5), orders, clock)
    await countdown.start()
    task = countdown._task

    first = await countdown.accept()
    second = await countdown.accept()
    third = await countdown.reject("Closed")

    assert first.ok and first.order["status"] == "confirmed"
    assert second is None and third is None
    assert len(orders.calls) == 1

    await asyncio.gather(task, return_exceptions=True)
    assert task.cancelled()


async def test_reject_cancels_with_reason(clock):
    orders = RecordingOrders()
    countdown = _countdown(_order(5), orders, clock)
    await countdown.start()

    result = await countdown.reject("Kitchen closed")

    assert result.action == "reject"
    [(status, kwargs)] = orders.calls
    assert status == OrderStatus.CANCELLED
    assert kwargs["reason"] == "Kitchen closed"
    assert kwargs["actor_id"] == RESTAURANT_ID


@pytest.mark.parametrize("reason", [None, "", "   "])
async def test_blank_reject_keeps_countdown_running(clock, reason):
    orders = RecordingOrders()
    countdown = _countdown(_order(5), orders, clock)
    await countdown.start()

    with pytest.raises(ValidationFailed):
        await countdown.reject(reason)

    assert countdown.state == CountdownState.RUNNING
    assert orders.calls == []
    assert (await countdown.accept()).ok


async def test_failed_transition_is_reported_not_retried(clock):
    error = ConflictError("Order changed")
    orders = RecordingOrders(error=error)
    countdown = _countdown(_order(5), orders, clock)
    await countdown.start()

    result = await countdown.accept()

    assert result.ok is False
    assert countdown.last_error is error
    assert result.to_dict()["error"] == "Order changed"
    assert await countdown.accept() is None
    assert len(orders.calls) == 1


async def test_dispose_stops_ticking(clock):
    orders = RecordingOrders()
    ticks = []
    countdown = _countdown(
        _order(0), orders, clock,
        tick_seconds=0.01,
        on_tick=lambda order_id, remaining: ticks.append(remaining),
    )
    await countdown.start()

    countdown.dispose()
    await asyncio.sleep(0.05)

    assert countdown.state == CountdownState.CANCELLED
    assert ticks == []
    assert orders.calls == []
    assert await countdown.accept() is None


async def test_non_pending_order_gets_no_countdown(clock):
    orders = RecordingOrders()
    countdown = _countdown(_order(40, status="confirmed"), orders, clock)

    await countdown.start()

    assert countdown.state == CountdownState.CANCELLED
    assert orders.calls == []


# =============================================================================
# QUEUE SESSION
# =============================================================================

@pytest.fixture
def session_messages():
    return []


@pytest.fixture
async def session(orders, store, clock, session_messages):
    async def send(message):
        session_messages.append(message)

    queue = OrderQueueSession(RESTAURANT_ID, orders, store, send=send, window_seconds=30, tick_seconds=60, clock=clock)
    yield queue
    queue.close()


async def test_session_tracks_existing_and_new_pending_orders(session, place_order):
    existing = await place_order()

    pending = await session.open()
    assert [o["id"] for o in pending] == [existing["id"]]

    arrived = await place_order()

    assert set(session.countdowns) == {existing["id"], arrived["id"]}
    assert all(c.state == CountdownState.RUNNING for c in session.countdowns.values())


async def test_session_accept_confirms_and_reports(session, place_order, orders, session_messages):
    order = await place_order()
    await session.open()

    result = await session.accept(order["id"])

    assert result.ok
    assert (await orders.get_order(order["id"]))["status"] == "confirmed"
    concluded = [m for m in session_messages if m["type"] == "concluded"]
    assert concluded == [{"type": "concluded", "orderId": order["id"], "action": "accept", "ok": True}]
    assert await session.accept(order["id"]) is None


async def test_session_blank_reject_leaves_order_actionable(session, place_order, orders):
    order = await place_order()
    await session.open()

    with pytest.raises(ValidationFailed):
        await session.reject(order["id"], "")

    assert session.countdowns[order["id"]].state == CountdownState.RUNNING
    result = await session.accept(order["id"])
    assert result.ok
    assert (await orders.get_order(order["id"]))["status"] == "confirmed"


async def test_change_elsewhere_cancels_countdown(session, place_order, orders):
    order = await place_order()
    await session.open()

    await orders.cancel_order(order["id"], CUSTOMER_ID, "Ordered by mistake")

    assert session.countdowns[order["id"]].state == CountdownState.CANCELLED
    assert await session.accept(order["id"]) is None


async def test_expired_order_is_auto_accepted_on_open(session, place_order, orders, clock):
    order = await place_order()
    clock.advance(45)

    await session.open()

    assert (await orders.get_order(order["id"]))["status"] == "confirmed"
    updates = (await orders.get_order(order["id"]))["tracking_updates"]
    assert updates[-1]["message"] == AUTO_ACCEPT_MESSAGE.format(window=30)


async def test_close_disposes_countdowns(session, place_order):
    await place_order()
    await session.open()
    countdowns = list(session.countdowns.values())

    session.close()

    assert all(c.state == CountdownState.CANCELLED for c in countdowns)
    assert session.countdowns == {}
