"""
Authenticated cart persistence in the `cart_items` collection.

One document per (user_id, product_id). Prices are never stored with the
line: `fetch` joins every line with the live product, so the cart always
shows current catalog pricing.
"""
import logging
from typing import Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from shared.utils import with_timeout
from storefront.catalog import ProductCatalog
from storefront.models import Cart, CartLine, UserOwner, utcnow

logger = logging.getLogger(__name__)


class RemoteCartStore:
    def __init__(self, db: AsyncIOMotorDatabase, catalog: ProductCatalog):
        self.items = db.cart_items
        self.catalog = catalog

    async def ensure_indexes(self):
        await self.items.create_index(
            [("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True
        )
        await self.items.create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])

    async def fetch(self, user_id: str) -> Cart:
        cursor = self.items.find({"user_id": user_id}).sort("created_at", ASCENDING)
        docs = await with_timeout(cursor.to_list(length=None), "cart_items.find")
        products = await self.catalog.get_many(doc["product_id"] for doc in docs)

        lines = []
        for doc in docs:
            product = products.get(doc["product_id"])
            if product is None:
                logger.warning(
                    "Cart line refers to a missing product, skipping",
                    extra={"user_id": user_id, "product_id": doc["product_id"]},
                )
                continue
            lines.append(CartLine.from_product(product, doc["quantity"]))
        return Cart(owner=UserOwner(user_id=user_id), lines=lines)

    async def get_quantity(self, user_id: str, product_id: str) -> Optional[int]:
        doc = await with_timeout(
            self.items.find_one({"user_id": user_id, "product_id": product_id}),
            "cart_items.find_one",
        )
        return doc["quantity"] if doc else None

    async def upsert_line(self, user_id: str, product_id: str, quantity: int):
        now = utcnow()
        await with_timeout(
            self.items.update_one(
                {"user_id": user_id, "product_id": product_id},
                {
                    "$set": {"quantity": quantity, "updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
            ),
            "cart_items.update_one",
        )

    async def remove_line(self, user_id: str, product_id: str):
        await with_timeout(
            self.items.delete_one({"user_id": user_id, "product_id": product_id}),
            "cart_items.delete_one",
        )

    async def remove_lines(self, user_id: str, product_ids: Iterable[str]):
        ids = list(product_ids)
        if not ids:
            return
        await with_timeout(
            self.items.delete_many({"user_id": user_id, "product_id": {"$in": ids}}),
            "cart_items.delete_many",
        )

    async def clear(self, user_id: str):
        await with_timeout(self.items.delete_many({"user_id": user_id}), "cart_items.delete_many")
