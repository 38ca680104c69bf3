"""
System-of-record for orders and the per-day order sequence.
"""
import logging
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from shared.utils import with_timeout
from storefront.catalog import to_object_id
from storefront.models import OrderDB, OrderStatus, utcnow

logger = logging.getLogger(__name__)


def to_document(value):
    """Convert a dumped model into something BSON can store (floats for money, like the catalog)."""
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_document(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    return value


def order_from_doc(doc: dict) -> OrderDB:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    return OrderDB(**doc)


class OrderLedger:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.orders = db.orders
        self.counters = db.order_counters

    async def ensure_indexes(self):
        # Display ids repeat across days (2025-1-11 and 2025-11-1 share a stamp)
        await self.orders.create_index("display_id")
        await self.orders.create_index([("buyer_id", ASCENDING), ("created_at", DESCENDING)])
        await self.orders.create_index([("store_id", ASCENDING), ("created_at", DESCENDING)])

    async def reserve_sequence(self, date_key: str, count: int) -> int:
        """
        Atomically take `count` consecutive sequence numbers for the day.

        Returns how many orders the day had before this block, so the block
        is `start + 1 .. start + count`.
        """
        doc = await with_timeout(
            self.counters.find_one_and_update(
                {"_id": date_key},
                {"$inc": {"seq": count}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            ),
            "order_counters.find_one_and_update",
        )
        return doc["seq"] - count

    async def insert_order(self, order: OrderDB) -> str:
        doc = to_document(order.model_dump(by_alias=True, exclude={"id"}))
        result = await with_timeout(self.orders.insert_one(doc), "orders.insert_one")
        return str(result.inserted_id)

    async def get_order(self, order_id: str) -> Optional[OrderDB]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        doc = await with_timeout(self.orders.find_one({"_id": oid}), "orders.find_one")
        return order_from_doc(doc) if doc else None

    async def list_for_buyer(self, buyer_id: str, skip: int = 0, limit: int = 10) -> List[OrderDB]:
        return await self._list({"buyer_id": buyer_id}, skip, limit)

    async def list_for_store(self, store_id: str, skip: int = 0, limit: int = 10) -> List[OrderDB]:
        return await self._list({"store_id": store_id}, skip, limit)

    async def _list(self, query: dict, skip: int, limit: int) -> List[OrderDB]:
        cursor = self.orders.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        docs = await with_timeout(cursor.to_list(length=limit), "orders.find")
        return [order_from_doc(doc) for doc in docs]

    async def transition_status(
        self, order_id: str, current: OrderStatus, new: OrderStatus
    ) -> Optional[OrderDB]:
        """Compare-and-set the status. Returns None if the order moved on meanwhile."""
        oid = to_object_id(order_id)
        if oid is None:
            return None
        doc = await with_timeout(
            self.orders.find_one_and_update(
                {"_id": oid, "status": current.value},
                {"$set": {"status": new.value, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            ),
            "orders.find_one_and_update",
        )
        return order_from_doc(doc) if doc else None
