"""
Shared fixtures: an in-memory store, a silent mock notifier and the services
wired on top of them, all with a pinned clock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from foodnow.core.config import Settings
from foodnow.models import OrderStatus
from foodnow.services.notifications import MockNotificationService
from foodnow.services.orders import OrderService
from foodnow.services.persistence import InMemoryPersistenceProvider
from foodnow.services.ratings import RatingService
from foodnow.services.rewards import LoyaltyService

# A Wednesday, so no weekend multiplier applies
NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc)

RESTAURANT_ID = "rest-1"
CUSTOMER_ID = "cust-1"
RIDER_ID = "rider-1"


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, env_mode="development", auto_accept_worker_enabled=False)


@pytest.fixture
def store() -> InMemoryPersistenceProvider:
    return InMemoryPersistenceProvider()


@pytest.fixture
def notifications() -> MockNotificationService:
    return MockNotificationService(failure_rate=0.0, latency=(0, 0))


@pytest.fixture
def loyalty(store, settings, clock) -> LoyaltyService:
    return LoyaltyService(store, settings=settings, clock=clock)


@pytest.fixture
def orders(store, notifications, loyalty, settings, clock) -> OrderService:
    return OrderService(store, notifications=notifications, loyalty=loyalty, settings=settings, clock=clock)


@pytest.fixture
def ratings(store, loyalty, settings, clock) -> RatingService:
    return RatingService(store, loyalty=loyalty, settings=settings, clock=clock)


@pytest.fixture
def menu_item(orders):
    """Coroutine factory adding a menu item to RESTAURANT_ID."""
    async def _add(name: str = "Jollof Rice", price: float = 2500.0, **kwargs):
        return await orders.add_menu_item(RESTAURANT_ID, name=name, base_price=price, **kwargs)
    return _add


@pytest.fixture
def place_order(orders, menu_item):
    """Coroutine factory placing a pending order for CUSTOMER_ID."""
    async def _place(quantity: int = 1, price: float = 2500.0, **kwargs):
        item = await menu_item(price=price)
        kwargs.setdefault("contact_phone", "+2348012345678")
        return await orders.create_order(
            customer_id=kwargs.pop("customer_id", CUSTOMER_ID),
            restaurant_id=RESTAURANT_ID,
            items=[{"menu_item_id": item["id"], "quantity": quantity}],
            **kwargs,
        )
    return _place


@pytest.fixture
def delivered_order(orders, place_order):
    """Coroutine factory walking a new order all the way to delivered."""
    async def _deliver(**kwargs):
        order = await place_order(**kwargs)
        for status in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY):
            order = await orders.transition(order["id"], status, "restaurant", actor_id=RESTAURANT_ID)
        await orders.assign_rider(order["id"], RIDER_ID)
        order = await orders.transition(order["id"], OrderStatus.PICKED_UP, "rider", actor_id=RIDER_ID)
        return await orders.transition(order["id"], OrderStatus.DELIVERED, "rider", actor_id=RIDER_ID)
    return _deliver
