import asyncio

import pytest

from foodnow.core.exceptions import ConflictError, InsufficientBalance, NoQualifyingTier, ValidationFailed
from foodnow.services.rewards import DEFAULT_TIERS, LoyaltyService, select_tier
from foodnow.services.rewards.ledger import MAX_WRITE_ATTEMPTS

from conftest import CUSTOMER_ID, NOW


def test_tier_selection():
    assert select_tier(99) is None
    assert select_tier(100).name == "Bronze"
    assert select_tier(999).name == "Silver"
    assert select_tier(5000).name == "Gold"


def test_tier_discount_is_capped():
    gold = DEFAULT_TIERS[-1]
    assert gold.discount_for(1000) == 150
    assert gold.discount_for(100000) == 2000


def test_points_calculation(loyalty):
    assert loyalty.calculate_points(2500) == 25
    assert loyalty.calculate_points(2599) == 25
    assert loyalty.calculate_points(2500, [2]) == 50
    assert loyalty.calculate_points(2500, [2, 1.5]) == 75
    assert loyalty.calculate_points(99) == 0


async def test_account_opens_empty(loyalty):
    account = await loyalty.get_account(CUSTOMER_ID)
    assert account["current_points"] == 0
    assert account["lifetime_points"] == 0


async def test_earn_writes_ledger_entry(loyalty):
    points = await loyalty.earn(CUSTOMER_ID, "order-1", 2500, [2])

    assert points == 50
    account = await loyalty.get_account(CUSTOMER_ID)
    assert account["current_points"] == 50
    assert account["lifetime_points"] == 50

    [entry] = await loyalty.transactions(CUSTOMER_ID)
    assert entry["type"] == "earned"
    assert entry["amount"] == 50
    assert entry["previous_balance"] == 0
    assert entry["new_balance"] == 50
    assert entry["created_at"] == NOW


async def test_earn_below_one_point_writes_nothing(loyalty):
    assert await loyalty.earn(CUSTOMER_ID, None, 50) == 0
    assert await loyalty.transactions(CUSTOMER_ID) == []


async def test_earn_negative_amount_rejected(loyalty):
    with pytest.raises(ValidationFailed):
        await loyalty.earn(CUSTOMER_ID, None, -10)


async def test_redeem_silver(loyalty):
    await loyalty.earn(CUSTOMER_ID, None, 100000)

    discount = await loyalty.redeem(CUSTOMER_ID, 500, "order-9")

    assert discount == 50.0
    account = await loyalty.get_account(CUSTOMER_ID)
    assert account["current_points"] == 500
    assert account["lifetime_points"] == 1000

    latest = (await loyalty.transactions(CUSTOMER_ID))[0]
    assert latest["type"] == "redeemed"
    assert latest["previous_balance"] == 1000
    assert latest["new_balance"] == 500
    assert latest["discount_amount"] == 50.0


async def test_redeem_more_than_balance(loyalty):
    await loyalty.earn(CUSTOMER_ID, None, 20000)

    with pytest.raises(InsufficientBalance) as exc_info:
        await loyalty.redeem(CUSTOMER_ID, 500, None)

    assert exc_info.value.available == 200
    assert (await loyalty.get_account(CUSTOMER_ID))["current_points"] == 200
    assert len(await loyalty.transactions(CUSTOMER_ID)) == 1


async def test_redeem_below_smallest_tier(loyalty):
    await loyalty.earn(CUSTOMER_ID, None, 20000)

    with pytest.raises(NoQualifyingTier):
        await loyalty.redeem(CUSTOMER_ID, 50, None)


async def test_redeem_non_positive(loyalty):
    with pytest.raises(ValidationFailed):
        await loyalty.redeem(CUSTOMER_ID, 0, None)


async def test_concurrent_redemptions_never_go_negative(loyalty):
    await loyalty.earn(CUSTOMER_ID, None, 60000)  # 600 points

    results = await asyncio.gather(
        loyalty.redeem(CUSTOMER_ID, 500, None),
        loyalty.redeem(CUSTOMER_ID, 500, None),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, float)) == 1
    assert sum(1 for r in results if isinstance(r, InsufficientBalance)) == 1
    assert (await loyalty.get_account(CUSTOMER_ID))["current_points"] == 100


async def test_ledger_replays_to_balance(loyalty):
    await loyalty.earn(CUSTOMER_ID, "o1", 30000)
    await loyalty.award_bonus(CUSTOMER_ID, 10, "Rating bonus")
    await loyalty.redeem(CUSTOMER_ID, 200, None)

    balance = 0
    for entry in await loyalty.transactions(CUSTOMER_ID, limit=None):
        sign = -1 if entry["type"] == "redeemed" else 1
        assert entry["new_balance"] == entry["previous_balance"] + sign * entry["amount"]
        balance += sign * entry["amount"]

    assert balance == (await loyalty.get_account(CUSTOMER_ID))["current_points"] == 110


async def test_lifetime_badges(loyalty):
    await loyalty.earn(CUSTOMER_ID, None, 50000)
    badges = {b["badge_id"] for b in await loyalty.badges(CUSTOMER_ID)}
    assert badges == {"loyal_customer"}

    await loyalty.earn(CUSTOMER_ID, None, 50000)
    badges = {b["badge_id"] for b in await loyalty.badges(CUSTOMER_ID)}
    assert badges == {"loyal_customer", "vip_customer"}


async def test_earn_for_order_is_idempotent(loyalty):
    order = {"id": "order-1", "customer_id": CUSTOMER_ID, "total": 2500.0, "delivered_at": NOW}

    assert await loyalty.earn_for_order(order) == 50
    assert await loyalty.earn_for_order(order) == 0

    badges = {b["badge_id"] for b in await loyalty.badges(CUSTOMER_ID)}
    assert "first_order" in badges


async def test_second_order_has_no_first_order_multiplier(loyalty):
    await loyalty.earn_for_order({"id": "o1", "customer_id": CUSTOMER_ID, "total": 2500.0, "delivered_at": NOW})
    points = await loyalty.earn_for_order({"id": "o2", "customer_id": CUSTOMER_ID, "total": 2500.0, "delivered_at": NOW})
    assert points == 25


async def test_first_order_worth_no_points_still_counts_as_first(loyalty):
    small = await loyalty.earn_for_order({"id": "o1", "customer_id": CUSTOMER_ID, "total": 50.0, "delivered_at": NOW})
    regular = await loyalty.earn_for_order({"id": "o2", "customer_id": CUSTOMER_ID, "total": 2500.0, "delivered_at": NOW})

    assert small == 0
    assert regular == 25
    assert [b["badge_id"] for b in await loyalty.badges(CUSTOMER_ID)] == ["first_order"]


async def test_weekend_multiplier(store, settings, clock):
    from datetime import datetime, timezone

    saturday = datetime(2024, 5, 18, 12, 0, tzinfo=timezone.utc)
    loyalty = LoyaltyService(store, settings=settings, clock=clock)

    multipliers = await loyalty.order_multipliers({"customer_id": "weekend-cust", "delivered_at": saturday})
    assert multipliers == [2.0, 1.5]


def test_next_tier(loyalty):
    assert loyalty.next_tier(0).name == "Bronze"
    assert loyalty.next_tier(600).name == "Gold"
    assert loyalty.next_tier(5000) is None


def _conflicting_updates(store, failures):
    """Make the next ``failures`` account updates lose a race."""
    real_update = store.update
    calls = []

    async def update(table, record_id, patch, expected=None):
        calls.append(table)
        if table == "loyalty_accounts" and len(calls) <= failures:
            raise ConflictError("Balance changed")
        return await real_update(table, record_id, patch, expected)

    store.update = update
    return calls


async def test_balance_write_retries_after_conflict(loyalty, store):
    calls = _conflicting_updates(store, failures=1)

    assert await loyalty.earn(CUSTOMER_ID, None, 2500) == 25

    assert calls == ["loyalty_accounts", "loyalty_accounts"]
    assert (await loyalty.get_account(CUSTOMER_ID))["current_points"] == 25
    assert len(await loyalty.transactions(CUSTOMER_ID)) == 1


async def test_balance_write_gives_up_after_max_attempts(loyalty, store):
    calls = _conflicting_updates(store, failures=MAX_WRITE_ATTEMPTS)

    with pytest.raises(ConflictError):
        await loyalty.earn(CUSTOMER_ID, None, 2500)

    assert len(calls) == MAX_WRITE_ATTEMPTS
    assert (await loyalty.get_account(CUSTOMER_ID))["current_points"] == 0
    assert await loyalty.transactions(CUSTOMER_ID) == []
