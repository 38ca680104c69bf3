from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import List

from pymongo import ASCENDING, DESCENDING

from shared.utils import with_timeout
from storefront.models import utcnow


class WishlistStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.items = db.wishlist

    async def ensure_indexes(self):
        await self.items.create_index(
            [("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True
        )

    async def contains(self, user_id: str, product_id: str) -> bool:
        doc = await with_timeout(
            self.items.find_one({"user_id": user_id, "product_id": product_id}, {"_id": 1}),
            "wishlist.find_one",
        )
        return doc is not None

    async def toggle(self, user_id: str, product_id: str) -> bool:
        """Flip membership and return whether the product is now wishlisted."""
        result = await with_timeout(
            self.items.delete_one({"user_id": user_id, "product_id": product_id}),
            "wishlist.delete_one",
        )
        if result.deleted_count:
            return False
        await with_timeout(
            self.items.update_one(
                {"user_id": user_id, "product_id": product_id},
                {"$setOnInsert": {"created_at": utcnow()}},
                upsert=True,
            ),
            "wishlist.update_one",
        )
        return True

    async def list_product_ids(self, user_id: str) -> List[str]:
        """Wishlisted product ids, most recently added first."""
        cursor = self.items.find({"user_id": user_id}).sort(
            [("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        docs = await with_timeout(cursor.to_list(length=None), "wishlist.find")
        return [doc["product_id"] for doc in docs]
