from typing import Optional, Union

from fastapi import Header, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import AppException, UnauthorizedException, verify_token
from storefront.catalog import ProductCatalog
from storefront.checkout import CheckoutService
from storefront.follows import StoreFollowStore
from storefront.ledger import OrderLedger
from storefront.local_store import FileKeyValueStore
from storefront.models import GuestOwner, UserOwner
from storefront.notifications import PushNotifier
from storefront.orders import OrderService
from storefront.reconciler import CartReconciler
from storefront.remote_store import RemoteCartStore
from storefront.reviews import ReviewStore
from storefront.wishlist import WishlistStore


def configure_services(app, db: AsyncIOMotorDatabase, local_cart_dir: str, notifier: PushNotifier):
    """Wire the cart and order services onto app.state."""
    catalog = ProductCatalog(db)
    ledger = OrderLedger(db)
    remote = RemoteCartStore(db, catalog)
    reconciler = CartReconciler(FileKeyValueStore(local_cart_dir), remote)

    app.state.catalog = catalog
    app.state.ledger = ledger
    app.state.remote_cart = remote
    app.state.reconciler = reconciler
    app.state.wishlist = WishlistStore(db)
    app.state.follows = StoreFollowStore(db)
    app.state.reviews = ReviewStore(db)
    app.state.checkout = CheckoutService(ledger, reconciler, catalog, notifier)
    app.state.orders = OrderService(ledger, catalog, notifier)


def get_reconciler(request: Request) -> CartReconciler:
    return request.app.state.reconciler

def get_catalog(request: Request) -> ProductCatalog:
    return request.app.state.catalog

def get_checkout(request: Request) -> CheckoutService:
    return request.app.state.checkout

def get_ledger(request: Request) -> OrderLedger:
    return request.app.state.ledger

def get_orders(request: Request) -> OrderService:
    return request.app.state.orders

def get_wishlist(request: Request) -> WishlistStore:
    return request.app.state.wishlist

def get_follows(request: Request) -> StoreFollowStore:
    return request.app.state.follows

def get_reviews(request: Request) -> ReviewStore:
    return request.app.state.reviews


def _bearer_payload(authorization: str) -> dict:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedException("Invalid authentication credentials")
    return verify_token(token)


async def get_current_user(request: Request, authorization: str = Header(...)) -> dict:
    payload = _bearer_payload(authorization)
    user = {"id": payload["sub"], "email": payload.get("email")}
    request.state.user_id = user["id"]
    return user


async def get_optional_user(request: Request, authorization: Optional[str] = Header(None)) -> Optional[dict]:
    if not authorization:
        return None
    return await get_current_user(request, authorization)


async def get_device_key(x_device_id: Optional[str] = Header(None)) -> Optional[str]:
    if x_device_id is None:
        return None
    device_key = x_device_id.strip()
    if not device_key or len(device_key) > 128:
        raise AppException(detail="Invalid X-Device-ID header")
    return device_key


async def get_cart_owner(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_device_id: Optional[str] = Header(None),
) -> Union[GuestOwner, UserOwner]:
    """Signed-in callers use their remote cart, everyone else the device cart."""
    user = await get_optional_user(request, authorization)
    if user is not None:
        return UserOwner(user_id=user["id"])
    device_key = await get_device_key(x_device_id)
    if device_key is None:
        raise AppException(detail="Sign in or send an X-Device-ID header")
    return GuestOwner(device_key=device_key)
