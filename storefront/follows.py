from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from shared.utils import with_timeout
from storefront.models import utcnow


class StoreFollowStore:
    """Buyers following stores, one row per (user, store)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.follows = db.store_follows

    async def ensure_indexes(self):
        await self.follows.create_index(
            [("user_id", ASCENDING), ("store_id", ASCENDING)], unique=True
        )

    async def contains(self, user_id: str, store_id: str) -> bool:
        doc = await with_timeout(
            self.follows.find_one({"user_id": user_id, "store_id": store_id}, {"_id": 1}),
            "store_follows.find_one",
        )
        return doc is not None

    async def toggle(self, user_id: str, store_id: str) -> bool:
        result = await with_timeout(
            self.follows.delete_one({"user_id": user_id, "store_id": store_id}),
            "store_follows.delete_one",
        )
        if result.deleted_count:
            return False
        await with_timeout(
            self.follows.update_one(
                {"user_id": user_id, "store_id": store_id},
                {"$setOnInsert": {"created_at": utcnow()}},
                upsert=True,
            ),
            "store_follows.update_one",
        )
        return True

    async def list_store_ids(self, user_id: str) -> List[str]:
        cursor = self.follows.find({"user_id": user_id}).sort(
            [("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        docs = await with_timeout(cursor.to_list(length=None), "store_follows.find")
        return [doc["store_id"] for doc in docs]
