"""
Auto-Accept Countdown

A restaurant has a fixed window (30 s by default) after an order is placed to
accept or reject it. When the window runs out the order is confirmed on the
restaurant's behalf.

    AutoAcceptCountdown   one order; owns one cancellable tick task
    OrderQueueSession     one operator console; owns the countdowns of every
                          pending order it can see and disposes them on close

The window is measured from the order's ``created_at``, so reconnecting to a
console resumes each countdown where it really is rather than restarting it.

Exactly one of accept, reject or timeout ever acts on an order. Once a
countdown has concluded, further calls are no-ops.
"""

import asyncio
import enum
import inspect
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from foodnow.core.clock import Clock, ensure_aware, utcnow
from foodnow.core.config import get_settings
from foodnow.core.exceptions import ValidationFailed
from foodnow.models import ActorRole, OrderStatus
from foodnow.services.persistence import BasePersistenceProvider, ChangeEvent, Record

logger = logging.getLogger(__name__)


AUTO_ACCEPT_MESSAGE = "Order auto-confirmed (restaurant did not respond within {window} seconds)"


class CountdownState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONCLUDED = "concluded"
    CANCELLED = "cancelled"


@dataclass
class TransitionResult:
    """
    Outcome of the one action a countdown performed.

    Attributes:
        order_id: The order acted on
        action: "accept", "reject" or "timeout"
        ok: Whether the status change was stored
        order: The updated order when ok
        error: The exception raised by the transition when not ok
    """
    order_id: str
    action: str
    ok: bool
    order: Optional[Record] = None
    error: Optional[Exception] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"orderId": self.order_id, "action": self.action, "ok": self.ok}
        if self.error is not None:
            data["error"] = getattr(self.error, "message", str(self.error))
        return data


TickHandler = Callable[[str, int], Union[None, Awaitable[None]]]
ConcludedHandler = Callable[[TransitionResult], Union[None, Awaitable[None]]]


async def _call(handler: Optional[Callable], *args) -> None:
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class AutoAcceptCountdown:
    """
    Countdown for a single pending order.

    Args:
        order: The order record (needs id, restaurant_id, status, created_at)
        orders: Anything with OrderService's ``transition`` coroutine
        window_seconds: Length of the acceptance window
        tick_seconds: Interval between ticks; each tick takes one second off
        clock: Returns the current UTC time
        on_tick: Called with (order_id, remaining) after every tick
        on_concluded: Called with the TransitionResult once the action ran

    Example:
        >>> countdown = AutoAcceptCountdown(order, order_service)
        >>> await countdown.start()
        >>> countdown.remaining
        24
        >>> await countdown.accept()
    """

    def __init__(
        self,
        order: Mapping[str, Any],
        orders,
        window_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        clock: Clock = utcnow,
        on_tick: Optional[TickHandler] = None,
        on_concluded: Optional[ConcludedHandler] = None,
    ):
        settings = get_settings()
        self.order = dict(order)
        self.order_id: str = order["id"]
        self.orders = orders
        self.window_seconds = window_seconds if window_seconds is not None else settings.auto_accept_window_seconds
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.auto_accept_tick_seconds
        self.clock = clock
        self.on_tick = on_tick
        self.on_concluded = on_concluded

        self.state = CountdownState.IDLE
        self.remaining: int = self.window_seconds
        self.result: Optional[TransitionResult] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def last_error(self) -> Optional[Exception]:
        """The error of the concluding transition, if it failed."""
        return self.result.error if self.result else None

    @property
    def is_active(self) -> bool:
        return self.state in (CountdownState.IDLE, CountdownState.RUNNING)

    def compute_remaining(self) -> int:
        elapsed = (self.clock() - ensure_aware(self.order["created_at"])).total_seconds()
        return self.window_seconds - math.floor(elapsed)

    async def start(self) -> None:
        """
        Begin counting down from the order's creation time.

        If the window has already passed, the auto-accept runs before this
        returns.
        """
        if self.state != CountdownState.IDLE:
            return

        if self.order["status"] != OrderStatus.PENDING.value:
            logger.debug(f"Order {self.order_id} is {self.order['status']}, no countdown needed")
            self.state = CountdownState.CANCELLED
            return

        self.remaining = self.compute_remaining()
        if self.remaining <= 0:
            self.remaining = 0
            await self._conclude("timeout")
            return

        self.state = CountdownState.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"auto-accept-{self.order_id}")
        logger.debug(f"Countdown for order {self.order_id} started ({self.remaining}s left)")

    async def _run(self) -> None:
        while self.remaining > 0:
            await asyncio.sleep(self.tick_seconds)
            if not self.is_active:
                return
            self.remaining -= 1
            try:
                await _call(self.on_tick, self.order_id, self.remaining)
            except Exception:
                logger.exception(f"Tick handler failed for order {self.order_id}")

        await self._conclude("timeout")

    async def accept(self) -> Optional[TransitionResult]:
        """Confirm the order now. Returns None if the countdown already concluded."""
        return await self._conclude("accept")

    async def reject(self, reason: str) -> Optional[TransitionResult]:
        """
        Cancel the order as the restaurant. Returns None if already concluded.

        Raises:
            ValidationFailed: Blank reason. The countdown keeps running.
        """
        if self.is_active:
            _require_reason(reason, self.order_id)
        return await self._conclude("reject", reason=reason)

    async def _conclude(self, action: str, reason: Optional[str] = None) -> Optional[TransitionResult]:
        if not self.is_active:
            return None

        self.state = CountdownState.CONCLUDED
        self._stop_ticking()

        try:
            if action == "reject":
                order = await self.orders.transition(
                    self.order,
                    OrderStatus.CANCELLED,
                    ActorRole.RESTAURANT,
                    actor_id=self.order.get("restaurant_id"),
                    reason=reason,
                )
            elif action == "accept":
                order = await self.orders.transition(
                    self.order,
                    OrderStatus.CONFIRMED,
                    ActorRole.RESTAURANT,
                    actor_id=self.order.get("restaurant_id"),
                )
            else:
                order = await self.orders.transition(
                    self.order,
                    OrderStatus.CONFIRMED,
                    ActorRole.RESTAURANT,
                    message=AUTO_ACCEPT_MESSAGE.format(window=self.window_seconds),
                )
            self.result = TransitionResult(order_id=self.order_id, action=action, ok=True, order=order)
            logger.info(f"Order {self.order_id} {action} completed")
        except Exception as exc:
            self.result = TransitionResult(order_id=self.order_id, action=action, ok=False, error=exc)
            logger.warning(f"Order {self.order_id} {action} failed: {exc}")

        try:
            await _call(self.on_concluded, self.result)
        except Exception:
            logger.exception(f"Concluded handler failed for order {self.order_id}")

        return self.result

    def _stop_ticking(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def cancel(self) -> None:
        """Stop the countdown without acting on the order."""
        if self.is_active:
            self.state = CountdownState.CANCELLED
        self._stop_ticking()

    def dispose(self) -> None:
        """Cancel and drop callbacks."""
        self.cancel()
        self.on_tick = None
        self.on_concluded = None


def _require_reason(reason: Optional[str], order_id: str) -> None:
    if not reason or not reason.strip():
        raise ValidationFailed("A rejection reason is required", order_id=order_id)


MessageSink = Callable[[dict], Awaitable[None]]


class OrderQueueSession:
    """
    The countdowns behind one restaurant operator console.

    Opening the session loads the restaurant's pending orders and starts a
    countdown for each; new pending orders arriving through the change
    subscription get one too. An order that leaves ``pending`` by any other
    path has its countdown cancelled. Closing the session disposes every
    countdown it owns.

    Args:
        restaurant_id: Restaurant whose queue this is
        orders: OrderService
        store: Persistence provider to subscribe to
        send: Coroutine receiving JSON-ready messages for the console
        window_seconds / tick_seconds / clock: Passed to each countdown
    """

    def __init__(
        self,
        restaurant_id: str,
        orders,
        store: BasePersistenceProvider,
        send: Optional[MessageSink] = None,
        window_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        clock: Clock = utcnow,
    ):
        self.restaurant_id = restaurant_id
        self.orders = orders
        self.store = store
        self.send = send
        self.window_seconds = window_seconds
        self.tick_seconds = tick_seconds
        self.clock = clock

        self.countdowns: dict[str, AutoAcceptCountdown] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closed = False

    async def open(self) -> list[Record]:
        """Subscribe to the restaurant's orders and start countdowns for pending ones."""
        self._unsubscribe = self.store.subscribe(
            "orders", {"restaurant_id": self.restaurant_id}, self._on_change
        )
        pending = await self.orders.list_restaurant_orders(self.restaurant_id, OrderStatus.PENDING)
        for order in pending:
            await self._track(order)

        logger.info(f"Queue session for restaurant {self.restaurant_id} opened ({len(pending)} pending)")
        return pending

    async def _emit(self, message: dict) -> None:
        if self.send is not None and not self._closed:
            await self.send(message)

    async def _on_tick(self, order_id: str, remaining: int) -> None:
        await self._emit({"type": "tick", "orderId": order_id, "remaining": remaining})

    async def _on_concluded(self, result: TransitionResult) -> None:
        await self._emit({"type": "concluded", **result.to_dict()})

    async def _track(self, order: Mapping[str, Any]) -> Optional[AutoAcceptCountdown]:
        if self._closed or order["id"] in self.countdowns:
            return self.countdowns.get(order["id"])

        countdown = AutoAcceptCountdown(
            order,
            self.orders,
            window_seconds=self.window_seconds,
            tick_seconds=self.tick_seconds,
            clock=self.clock,
            on_tick=self._on_tick,
            on_concluded=self._on_concluded,
        )
        self.countdowns[order["id"]] = countdown
        await countdown.start()
        return countdown

    async def _on_change(self, event: ChangeEvent) -> None:
        order = event.record
        await self._emit({"type": "order", "event": event.kind, "order": order})

        if order["status"] == OrderStatus.PENDING.value:
            await self._track(order)
            return

        countdown = self.countdowns.get(order["id"])
        if countdown is not None and countdown.is_active:
            # Acted on elsewhere (another console, the API or the worker)
            countdown.cancel()

    async def accept(self, order_id: str) -> Optional[TransitionResult]:
        return await self._act(order_id, "accept")

    async def reject(self, order_id: str, reason: str) -> Optional[TransitionResult]:
        _require_reason(reason, order_id)
        return await self._act(order_id, "reject", reason)

    async def _act(self, order_id: str, action: str, reason: Optional[str] = None) -> Optional[TransitionResult]:
        countdown = self.countdowns.get(order_id)
        if countdown is None:
            order = await self.orders.get_restaurant_order(order_id, self.restaurant_id)
            countdown = await self._track(order)
        if countdown is None:
            return None

        if action == "accept":
            return await countdown.accept()
        return await countdown.reject(reason)

    def close(self) -> None:
        """Dispose every countdown and stop listening for changes."""
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for countdown in self.countdowns.values():
            countdown.dispose()
        self.countdowns.clear()
        logger.info(f"Queue session for restaurant {self.restaurant_id} closed")
