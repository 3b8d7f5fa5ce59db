import pytest

from foodnow.core.exceptions import DuplicateRating, RatingNotAllowed, ValidationFailed
from foodnow.models import RatingTarget
from foodnow.services.ratings import category_averages, rating_trend

from conftest import CUSTOMER_ID, RESTAURANT_ID, RIDER_ID


def _scores(*scores):
    return [{"score": s} for s in scores]


def test_trend_needs_ten_ratings():
    assert rating_trend(_scores(5, 5, 5, 1, 1, 1)) == "stable"


def test_trend_improving_and_declining():
    # Newest first: 3 recent fives against seven twos
    assert rating_trend(_scores(5, 5, 5, 2, 2, 2, 2, 2, 2, 2)) == "improving"
    assert rating_trend(_scores(1, 1, 1, 4, 4, 4, 4, 4, 4, 4)) == "declining"
    assert rating_trend(_scores(*[4] * 12)) == "stable"


def test_category_averages_round_to_one_decimal():
    ratings = [
        {"categories": {"food_quality": 5, "packaging": 4}},
        {"categories": {"food_quality": 4}},
        {"categories": {"food_quality": 4}},
        {"categories": None},
    ]
    assert category_averages(ratings, RatingTarget.RESTAURANT) == {"food_quality": 4.3, "packaging": 4.0}


async def test_undelivered_order_cannot_be_rated(ratings, place_order, store):
    order = await place_order()

    with pytest.raises(RatingNotAllowed):
        await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 5)

    assert await store.query("ratings") == []
    assert await store.query("rating_aggregates") == []


async def test_other_customers_order_cannot_be_rated(ratings, delivered_order):
    order = await delivered_order()
    with pytest.raises(RatingNotAllowed):
        await ratings.submit_rating("cust-other", order["id"], "restaurant", RESTAURANT_ID, 5)


async def test_target_must_have_served_the_order(ratings, delivered_order):
    order = await delivered_order()
    with pytest.raises(RatingNotAllowed):
        await ratings.submit_rating(CUSTOMER_ID, order["id"], "rider", "rider-other", 5)


async def test_submit_updates_aggregate_and_awards_bonus(ratings, delivered_order, loyalty, store):
    order = await delivered_order()
    before = (await loyalty.get_account(CUSTOMER_ID))["current_points"]

    rating = await ratings.submit_rating(
        CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 4,
        comment="Great jollof", categories={"food_quality": 5},
    )
    await ratings.submit_rating(CUSTOMER_ID, order["id"], "rider", RIDER_ID, 5)

    assert rating["score"] == 4
    aggregate = await store.get("rating_aggregates", f"restaurant:{RESTAURANT_ID}")
    assert aggregate["average"] == 4.0
    assert aggregate["total"] == 1
    assert aggregate["category_averages"] == {"food_quality": 5.0}

    after = (await loyalty.get_account(CUSTOMER_ID))["current_points"]
    assert after - before == 15


async def test_duplicate_rating_rejected(ratings, delivered_order):
    order = await delivered_order()
    await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 4)

    with pytest.raises(DuplicateRating):
        await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 2)


async def test_score_and_category_validation(ratings, delivered_order):
    order = await delivered_order()

    with pytest.raises(ValidationFailed):
        await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 6)
    with pytest.raises(ValidationFailed):
        await ratings.submit_rating(
            CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 4, categories={"timeliness": 4},
        )


async def test_summary_distribution(ratings, delivered_order):
    for score in (5, 4, 4):
        order = await delivered_order()
        await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, score)

    summary = await ratings.get_summary("restaurant", RESTAURANT_ID)

    assert summary["average"] == 4.3
    assert summary["total"] == 3
    assert summary["distribution"] == {1: 0, 2: 0, 3: 0, 4: 2, 5: 1}
    assert summary["trend"] == "stable"


async def test_anonymous_reviewer_is_masked(ratings, delivered_order):
    order = await delivered_order()
    await ratings.submit_rating(CUSTOMER_ID, order["id"], "restaurant", RESTAURANT_ID, 3, is_anonymous=True)

    [listed] = await ratings.list_ratings("restaurant", RESTAURANT_ID)
    assert listed["customer_id"] is None

    [own] = await ratings.customer_history(CUSTOMER_ID)
    assert own["customer_id"] == CUSTOMER_ID


async def test_flagged_rating_leaves_every_figure(ratings, delivered_order, store):
    first = await delivered_order()
    second = await delivered_order()
    low = await ratings.submit_rating(CUSTOMER_ID, first["id"], "restaurant", RESTAURANT_ID, 1)
    await ratings.submit_rating(CUSTOMER_ID, second["id"], "restaurant", RESTAURANT_ID, 5)

    with pytest.raises(ValidationFailed):
        await ratings.flag_rating(low["id"], "", "admin-1")

    flagged = await ratings.flag_rating(low["id"], "Abusive language", "admin-1")

    assert flagged["is_hidden"] is True
    assert flagged["moderated_by"] == "admin-1"
    summary = await ratings.get_summary("restaurant", RESTAURANT_ID)
    assert summary["total"] == 1
    assert summary["average"] == 5.0
    aggregate = await store.get("rating_aggregates", f"restaurant:{RESTAURANT_ID}")
    assert aggregate["total"] == 1
