from decimal import Decimal
from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import with_timeout
from storefront.models import ProductSnapshot, StoreSnapshot


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def to_decimal(value) -> Decimal:
    # Prices are stored as floats; go through str to avoid binary noise
    if value is None:
        return Decimal(0)
    return Decimal(str(value))


def product_from_doc(doc: dict) -> ProductSnapshot:
    return ProductSnapshot(
        id=str(doc["_id"]),
        store_id=str(doc["store_id"]),
        name=doc.get("name", ""),
        online_price=to_decimal(doc.get("online_price")),
        delivery_charges=to_decimal(doc.get("delivery_charges")),
        is_active=doc.get("is_active", True),
    )


def store_from_doc(doc: dict) -> StoreSnapshot:
    owner_id = doc.get("owner_id")
    return StoreSnapshot(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        owner_id=str(owner_id) if owner_id else None,
    )


class ProductCatalog:
    """Read-only view over `products` and `stores`, owned by the seller tooling."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.products = db.products
        self.stores = db.stores

    async def get(self, product_id: str) -> Optional[ProductSnapshot]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = await with_timeout(self.products.find_one({"_id": oid}), "products.find_one")
        return product_from_doc(doc) if doc else None

    async def get_many(self, product_ids: Iterable[str]) -> Dict[str, ProductSnapshot]:
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not oids:
            return {}
        cursor = self.products.find({"_id": {"$in": oids}})
        docs = await with_timeout(cursor.to_list(length=None), "products.find")
        return {str(doc["_id"]): product_from_doc(doc) for doc in docs}

    async def store_owner(self, store_id: str) -> Optional[str]:
        oid = to_object_id(store_id)
        if oid is None:
            return None
        doc = await with_timeout(
            self.stores.find_one({"_id": oid}, {"owner_id": 1}), "stores.find_one"
        )
        return str(doc["owner_id"]) if doc and doc.get("owner_id") else None

    async def get_stores(self, store_ids: Iterable[str]) -> Dict[str, StoreSnapshot]:
        oids = [oid for oid in (to_object_id(sid) for sid in store_ids) if oid is not None]
        if not oids:
            return {}
        cursor = self.stores.find({"_id": {"$in": oids}})
        docs = await with_timeout(cursor.to_list(length=None), "stores.find")
        return {str(doc["_id"]): store_from_doc(doc) for doc in docs}
