from decimal import Decimal

import pytest

from storefront.follows import StoreFollowStore
from storefront.reviews import ReviewStore
from storefront.wishlist import WishlistStore


@pytest.fixture
def reviews(db):
    return ReviewStore(db)


@pytest.fixture
def follows(db):
    return StoreFollowStore(db)


async def test_reviews_summarize_ratings(reviews):
    await reviews.add("buyer-1", "p1", 5, "Sweet and ripe")
    await reviews.add("buyer-2", "p1", 4)
    await reviews.add("buyer-3", "p1", 4)
    await reviews.add("buyer-1", "p2", 1)

    summary = await reviews.summary("p1")

    assert summary.count == 3
    assert summary.average == Decimal("4.3")
    assert [r.user_id for r in await reviews.list_for_product("p1")] == ["buyer-3", "buyer-2", "buyer-1"]


async def test_reviewing_again_replaces_the_review(reviews):
    first = await reviews.add("buyer-1", "p1", 2, "Bruised")
    second = await reviews.add("buyer-1", "p1", 5, "Replaced, all good")

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    listed = await reviews.list_for_product("p1")
    assert [(r.rating, r.comment) for r in listed] == [(5, "Replaced, all good")]


async def test_unreviewed_product_has_no_average(reviews):
    summary = await reviews.summary("nothing")
    assert summary.average is None
    assert summary.count == 0


async def test_follow_toggle_and_list(follows):
    assert await follows.toggle("buyer-1", "store-a") is True
    assert await follows.toggle("buyer-1", "store-b") is True
    assert await follows.contains("buyer-1", "store-a")
    assert await follows.list_store_ids("buyer-1") == ["store-b", "store-a"]

    assert await follows.toggle("buyer-1", "store-a") is False
    assert not await follows.contains("buyer-1", "store-a")
    assert await follows.list_store_ids("buyer-1") == ["store-b"]
    assert await follows.list_store_ids("buyer-2") == []


async def test_wishlist_lists_newest_first(db):
    wishlist = WishlistStore(db)
    await wishlist.toggle("buyer-1", "p1")
    await wishlist.toggle("buyer-1", "p2")
    await wishlist.toggle("buyer-1", "p3")
    await wishlist.toggle("buyer-1", "p2")

    assert await wishlist.list_product_ids("buyer-1") == ["p3", "p1"]
