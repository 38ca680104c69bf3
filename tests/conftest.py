"""Shared pytest fixtures for the storefront tests."""

import json
from datetime import date

import httpx
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import WriteError

from storefront.catalog import ProductCatalog
from storefront.checkout import CheckoutService
from storefront.ledger import OrderLedger
from storefront.local_store import FileKeyValueStore
from storefront.models import ProductSnapshot
from storefront.notifications import PushNotifier
from storefront.reconciler import CartReconciler
from storefront.remote_store import RemoteCartStore

TODAY = date(2025, 3, 7)


class PushRecorder:
    """Collects the JSON bodies posted to the push function."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.payloads = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"success": True})


class FlakyLedger(OrderLedger):
    """Fails the n-th order insert (0-based)."""

    def __init__(self, db, fail_on: int):
        super().__init__(db)
        self.fail_on = fail_on
        self.inserts = 0

    async def insert_order(self, order):
        index = self.inserts
        self.inserts += 1
        if index == self.fail_on:
            raise WriteError("orders collection is read-only")
        return await super().insert_order(order)


@pytest.fixture
def db():
    return AsyncMongoMockClient()["buylocal_test"]


@pytest.fixture
def catalog(db):
    return ProductCatalog(db)


@pytest.fixture
def remote(db, catalog):
    return RemoteCartStore(db, catalog)


@pytest.fixture
def ledger(db):
    return OrderLedger(db)


@pytest.fixture
def flaky_ledger(db):
    def _make(fail_on):
        return FlakyLedger(db, fail_on)
    return _make


@pytest.fixture
def kv_store(tmp_path):
    return FileKeyValueStore(str(tmp_path / "carts"))


@pytest.fixture
def reconciler(kv_store, remote):
    return CartReconciler(kv_store, remote)


@pytest.fixture
def push_recorder():
    return PushRecorder()


@pytest.fixture
def notifier(push_recorder):
    return PushNotifier(
        function_url="https://push.example.test/functions/v1/send-push",
        api_key="service-key",
        timeout=5,
        transport=httpx.MockTransport(push_recorder),
    )


@pytest.fixture
def checkout_service(ledger, reconciler, catalog, notifier):
    return CheckoutService(ledger, reconciler, catalog, notifier, today=lambda: TODAY)


@pytest.fixture
def seed_store(db):
    """Insert a store owned by `owner_id` and return its id."""

    async def _seed(owner_id="seller-1", name="Corner Shop"):
        result = await db.stores.insert_one({"name": name, "owner_id": owner_id})
        return str(result.inserted_id)

    return _seed


@pytest.fixture
def seed_product(db):
    """Insert a product and return its snapshot as the catalog would."""

    async def _seed(store_id, name="Mangoes", price=100.0, delivery=0.0, is_active=True):
        oid = ObjectId()
        await db.products.insert_one({
            "_id": oid,
            "store_id": store_id,
            "name": name,
            "online_price": price,
            "delivery_charges": delivery,
            "is_active": is_active,
        })
        return ProductSnapshot(
            id=str(oid),
            store_id=store_id,
            name=name,
            online_price=str(price),
            delivery_charges=str(delivery),
            is_active=is_active,
        )

    return _seed
