from decimal import Decimal

from bson import ObjectId


async def test_fetch_joins_live_product_snapshot(db, remote, seed_store, seed_product):
    store_id = await seed_store()
    product = await seed_product(store_id, price=40.0, delivery=10.0)
    await remote.upsert_line("user-1", product.id, 2)

    await db.products.update_one({"_id": ObjectId(product.id)}, {"$set": {"online_price": 35.5}})
    cart = await remote.fetch("user-1")

    [line] = cart.lines
    assert line.unit_price == Decimal("35.5")
    assert line.delivery_charge == Decimal("10.0")
    assert line.store_id == store_id
    assert line.quantity == 2
    assert cart.owner.user_id == "user-1"


async def test_upsert_replaces_quantity_instead_of_duplicating(db, remote, seed_store, seed_product):
    store_id = await seed_store()
    product = await seed_product(store_id)

    await remote.upsert_line("user-1", product.id, 1)
    await remote.upsert_line("user-1", product.id, 4)

    assert await db.cart_items.count_documents({"user_id": "user-1"}) == 1
    assert await remote.get_quantity("user-1", product.id) == 4


async def test_get_quantity_of_absent_line_is_none(remote):
    assert await remote.get_quantity("user-1", str(ObjectId())) is None


async def test_lines_follow_creation_order(remote, seed_store, seed_product):
    store_a = await seed_store(name="A")
    store_b = await seed_store(name="B")
    first = await seed_product(store_b, name="Bread")
    second = await seed_product(store_a, name="Apples")
    await remote.upsert_line("user-1", first.id, 1)
    await remote.upsert_line("user-1", second.id, 1)
    # Updating a line keeps its original position
    await remote.upsert_line("user-1", first.id, 3)

    cart = await remote.fetch("user-1")

    assert [l.product_id for l in cart.lines] == [first.id, second.id]
    assert cart.store_ids() == [store_b, store_a]


async def test_lines_for_deleted_products_are_skipped(db, remote, seed_store, seed_product):
    store_id = await seed_store()
    kept = await seed_product(store_id, name="Kept")
    gone = await seed_product(store_id, name="Gone")
    await remote.upsert_line("user-1", kept.id, 1)
    await remote.upsert_line("user-1", gone.id, 1)
    await db.products.delete_one({"_id": ObjectId(gone.id)})

    cart = await remote.fetch("user-1")

    assert [l.product_id for l in cart.lines] == [kept.id]


async def test_remove_and_clear(remote, seed_store, seed_product):
    store_id = await seed_store()
    products = [await seed_product(store_id, name=f"P{i}") for i in range(3)]
    for product in products:
        await remote.upsert_line("user-1", product.id, 1)
    await remote.upsert_line("user-2", products[0].id, 1)

    await remote.remove_line("user-1", products[0].id)
    await remote.remove_lines("user-1", [products[1].id])
    assert [l.product_id for l in (await remote.fetch("user-1")).lines] == [products[2].id]

    await remote.clear("user-1")
    assert (await remote.fetch("user-1")).is_empty
    assert (await remote.fetch("user-2")).line_count == 1
