"""
Product reviews. A buyer has at most one review per product; posting again
replaces it.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from shared.utils import with_timeout
from storefront.models import ReviewDB, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RatingSummary:
    average: Optional[Decimal]
    count: int


def review_from_doc(doc: dict) -> ReviewDB:
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    return ReviewDB(**doc)


class ReviewStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.reviews = db.product_reviews

    async def ensure_indexes(self):
        await self.reviews.create_index(
            [("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        await self.reviews.create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])

    async def add(self, user_id: str, product_id: str, rating: int, comment: Optional[str] = None) -> ReviewDB:
        now = utcnow()
        doc = await with_timeout(
            self.reviews.find_one_and_update(
                {"product_id": product_id, "user_id": user_id},
                {
                    "$set": {"rating": rating, "comment": comment, "updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            ),
            "product_reviews.find_one_and_update",
        )
        logger.info("Review saved", extra={"user_id": user_id, "product_id": product_id})
        return review_from_doc(doc)

    async def list_for_product(self, product_id: str, skip: int = 0, limit: int = 20) -> List[ReviewDB]:
        cursor = (
            self.reviews.find({"product_id": product_id})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        docs = await with_timeout(cursor.to_list(length=limit), "product_reviews.find")
        return [review_from_doc(doc) for doc in docs]

    async def summary(self, product_id: str) -> RatingSummary:
        cursor = self.reviews.find({"product_id": product_id}, {"rating": 1})
        docs = await with_timeout(cursor.to_list(length=None), "product_reviews.find")
        if not docs:
            return RatingSummary(average=None, count=0)
        average = Decimal(sum(doc["rating"] for doc in docs)) / len(docs)
        return RatingSummary(
            average=average.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            count=len(docs),
        )
