import pytest

from foodnow.core.exceptions import ConflictError, NetworkError, NotFoundError
from foodnow.services.persistence import InMemoryPersistenceProvider


async def test_insert_assigns_id_and_copies(store):
    source = {"status": "pending", "items": [1]}
    record = await store.insert("orders", source)

    assert record["id"]
    source["items"].append(2)
    stored = await store.get("orders", record["id"])
    assert stored["items"] == [1]


async def test_insert_duplicate_id_conflicts(store):
    await store.insert("orders", {"id": "o1"})
    with pytest.raises(ConflictError):
        await store.insert("orders", {"id": "o1"})


async def test_conditional_update_succeeds_when_expected_matches(store):
    await store.insert("orders", {"id": "o1", "status": "pending"})
    updated = await store.update("orders", "o1", {"status": "confirmed"}, expected={"status": "pending"})
    assert updated["status"] == "confirmed"


async def test_conditional_update_conflicts_and_writes_nothing(store):
    await store.insert("orders", {"id": "o1", "status": "confirmed"})

    with pytest.raises(ConflictError) as exc_info:
        await store.update("orders", "o1", {"status": "cancelled"}, expected={"status": "pending"})

    assert exc_info.value.context["actual"] == {"status": "confirmed"}
    assert (await store.get("orders", "o1"))["status"] == "confirmed"


async def test_update_missing_record(store):
    with pytest.raises(NotFoundError):
        await store.update("orders", "nope", {"status": "confirmed"})


async def test_query_filters_orders_and_limits(store):
    store.seed(
        "orders",
        {"id": "a", "restaurant_id": "r1", "created_at": 3},
        {"id": "b", "restaurant_id": "r1", "created_at": 1},
        {"id": "c", "restaurant_id": "r2", "created_at": 2},
    )

    rows = await store.query("orders", {"restaurant_id": "r1"}, order_by="created_at", descending=True)
    assert [r["id"] for r in rows] == ["a", "b"]

    rows = await store.query("orders", order_by="created_at", limit=2)
    assert [r["id"] for r in rows] == ["b", "c"]


async def test_query_ties_come_newest_first_when_descending(store):
    store.seed(
        "reward_transactions",
        {"id": "earned", "created_at": 5},
        {"id": "redeemed", "created_at": 5},
        {"id": "older", "created_at": 1},
    )

    rows = await store.query("reward_transactions", order_by="created_at", descending=True)
    assert [r["id"] for r in rows] == ["redeemed", "earned", "older"]

    rows = await store.query("reward_transactions", order_by="created_at")
    assert [r["id"] for r in rows] == ["older", "earned", "redeemed"]


async def test_atomic_rolls_back_every_write(store):
    await store.insert("accounts", {"id": "acc", "points": 10})

    with pytest.raises(RuntimeError):
        async with store.atomic():
            await store.update("accounts", "acc", {"points": 0})
            await store.insert("ledger", {"id": "t1"})
            raise RuntimeError("boom")

    assert (await store.get("accounts", "acc"))["points"] == 10
    assert await store.get("ledger", "t1") is None


async def test_nested_atomic_joins_outer_block(store):
    with pytest.raises(RuntimeError):
        async with store.atomic():
            await store.insert("ledger", {"id": "outer"})
            async with store.atomic():
                await store.insert("ledger", {"id": "inner"})
            raise RuntimeError("boom")

    assert await store.query("ledger") == []


async def test_subscribers_see_matching_changes_only(store):
    seen = []
    unsubscribe = store.subscribe("orders", {"restaurant_id": "r1"}, seen.append)

    await store.insert("orders", {"id": "o1", "restaurant_id": "r1", "status": "pending"})
    await store.insert("orders", {"id": "o2", "restaurant_id": "r2", "status": "pending"})
    await store.update("orders", "o1", {"status": "confirmed"})

    assert [(e.kind, e.record["id"]) for e in seen] == [("insert", "o1"), ("update", "o1")]
    assert seen[1].previous["status"] == "pending"

    unsubscribe()
    unsubscribe()
    await store.update("orders", "o1", {"status": "preparing"})
    assert len(seen) == 2


async def test_events_wait_for_commit_and_drop_on_rollback(store):
    seen = []

    async def handler(event):
        seen.append(event.record["id"])

    store.subscribe("orders", None, handler)

    async with store.atomic():
        await store.insert("orders", {"id": "kept"})
        assert seen == []
    assert seen == ["kept"]

    with pytest.raises(RuntimeError):
        async with store.atomic():
            await store.insert("orders", {"id": "dropped"})
            raise RuntimeError("boom")
    assert seen == ["kept"]


async def test_failing_subscriber_does_not_fail_the_write(store):
    def broken(event):
        raise ValueError("subscriber bug")

    store.subscribe("orders", None, broken)
    record = await store.insert("orders", {"id": "o1"})
    assert record["id"] == "o1"


async def test_simulated_outage():
    flaky = InMemoryPersistenceProvider(failure_rate=1.0)
    with pytest.raises(NetworkError):
        await flaky.get("orders", "o1")
