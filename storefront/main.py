from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
from typing import List, Union

from shared.utils import get_db_client, settings, SuccessResponse, AppException, NotFoundException, HealthResponse
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from storefront.catalog import ProductCatalog
from storefront.checkout import CheckoutService
from storefront.dependencies import (
    configure_services, get_cart_owner, get_catalog, get_checkout, get_current_user,
    get_device_key, get_follows, get_ledger, get_orders, get_reconciler, get_reviews, get_wishlist,
)
from storefront.follows import StoreFollowStore
from storefront.ledger import OrderLedger
from storefront.models import GuestOwner, ProductSnapshot, StoreSnapshot, UserOwner
from storefront.notifications import PushNotifier
from storefront.orders import OrderService
from storefront.reconciler import CartReconciler
from storefront.reviews import ReviewStore
from storefront.schemas import (
    CartItemAdd, CartItemUpdate, CartResponse, CheckoutRequest, CheckoutResponse, FollowResponse,
    OrderResponse, OrderStatusUpdate, ReviewCreate, ReviewListResponse, ReviewResponse,
    SessionResponse, WishlistResponse,
)
from storefront.wishlist import WishlistStore

SERVICE_NAME = "storefront-service"

# Setup Logging
logger = setup_logging(SERVICE_NAME)

app = FastAPI(title="BuyLocal Storefront")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Owner = Union[GuestOwner, UserOwner]

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    configure_services(app, app.mongodb, settings.LOCAL_CART_DIR, PushNotifier())
    # Indexes
    await app.state.remote_cart.ensure_indexes()
    await app.state.ledger.ensure_indexes()
    await app.state.wishlist.ensure_indexes()
    await app.state.follows.ensure_indexes()
    await app.state.reviews.ensure_indexes()

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Endpoints ---

# Cart
@app.get("/cart", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(
    request: Request,
    owner: Owner = Depends(get_cart_owner),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    cart = await reconciler.load(owner)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@app.post("/cart/items", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def add_to_cart(
    request: Request,
    item: CartItemAdd,
    owner: Owner = Depends(get_cart_owner),
    reconciler: CartReconciler = Depends(get_reconciler),
    catalog: ProductCatalog = Depends(get_catalog),
):
    product = await catalog.get(item.product_id)
    if product is None:
        raise NotFoundException(f"Product {item.product_id} not found")
    if not product.is_active:
        raise HTTPException(status_code=400, detail="Product is not available")

    cart = await reconciler.add(owner, product, item.quantity)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@app.put("/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(
    product_id: str,
    update: CartItemUpdate,
    owner: Owner = Depends(get_cart_owner),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    cart = await reconciler.update_quantity(owner, product_id, update.quantity)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@app.delete("/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(
    product_id: str,
    owner: Owner = Depends(get_cart_owner),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    cart = await reconciler.remove(owner, product_id)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@app.delete("/cart", response_model=SuccessResponse[CartResponse])
async def clear_cart(
    owner: Owner = Depends(get_cart_owner),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    cart = await reconciler.clear(owner)
    return SuccessResponse(data=CartResponse.from_cart(cart), message="Cart cleared")

# Session transitions
@app.post("/cart/session", response_model=SuccessResponse[SessionResponse])
async def start_session(
    user: dict = Depends(get_current_user),
    device_key: str = Depends(get_device_key),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    if device_key is None:
        raise AppException(detail="X-Device-ID header is required")
    cart = await reconciler.login(device_key, user["id"])
    return SuccessResponse(data=SessionResponse(user_id=user["id"], cart=CartResponse.from_cart(cart)))

@app.delete("/cart/session", response_model=SuccessResponse[dict])
async def end_session(
    device_key: str = Depends(get_device_key),
    reconciler: CartReconciler = Depends(get_reconciler),
):
    if device_key is None:
        raise AppException(detail="X-Device-ID header is required")
    reconciler.logout(device_key)
    return SuccessResponse(message="Signed out")

# Checkout
@app.post("/checkout", response_model=SuccessResponse[CheckoutResponse])
@limiter.limit("20/minute")
async def checkout(
    request: Request,
    body: CheckoutRequest,
    user: dict = Depends(get_current_user),
    reconciler: CartReconciler = Depends(get_reconciler),
    service: CheckoutService = Depends(get_checkout),
):
    owner = UserOwner(user_id=user["id"])
    cart = await reconciler.load(owner)
    if not cart.synced:
        raise AppException(status.HTTP_503_SERVICE_UNAVAILABLE, "Cart could not be loaded, please try again")
    result = await service.checkout(user["id"], cart, body.delivery_type, body)
    if not result.order_ids:
        message = "Cart is empty"
    elif result.cart_updated:
        message = "Order placed successfully"
    else:
        message = "Order placed, but your cart could not be updated"
    return SuccessResponse(
        data=CheckoutResponse(order_ids=result.order_ids, cart_updated=result.cart_updated),
        message=message,
    )

# Orders
@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user: dict = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ledger: OrderLedger = Depends(get_ledger),
):
    orders = await ledger.list_for_buyer(user["id"], (page - 1) * limit, limit)
    return SuccessResponse(data=[OrderResponse.from_order(order) for order in orders])

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(
    order_id: str,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_orders),
):
    order = await service.get_for_buyer(order_id, user["id"])
    return SuccessResponse(data=OrderResponse.from_order(order))

@app.get("/stores/{store_id}/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_store_orders(
    store_id: str,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_orders),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    orders = await service.list_for_store(store_id, user["id"], (page - 1) * limit, limit)
    return SuccessResponse(data=[OrderResponse.from_order(order) for order in orders])

@app.put("/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_orders),
):
    order = await service.advance_status(order_id, status_update.status, user["id"])
    return SuccessResponse(data=OrderResponse.from_order(order), message=f"Order {order.status.value}")

# Wishlist
@app.get("/wishlist", response_model=SuccessResponse[List[ProductSnapshot]])
async def list_wishlist(
    user: dict = Depends(get_current_user),
    wishlist: WishlistStore = Depends(get_wishlist),
    catalog: ProductCatalog = Depends(get_catalog),
):
    product_ids = await wishlist.list_product_ids(user["id"])
    products = await catalog.get_many(product_ids)
    # Products deleted since they were wishlisted are skipped
    return SuccessResponse(data=[products[pid] for pid in product_ids if pid in products])

@app.post("/wishlist/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def toggle_wishlist(
    product_id: str,
    user: dict = Depends(get_current_user),
    wishlist: WishlistStore = Depends(get_wishlist),
):
    in_wishlist = await wishlist.toggle(user["id"], product_id)
    return SuccessResponse(data=WishlistResponse(product_id=product_id, in_wishlist=in_wishlist))

@app.get("/wishlist/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def check_wishlist(
    product_id: str,
    user: dict = Depends(get_current_user),
    wishlist: WishlistStore = Depends(get_wishlist),
):
    in_wishlist = await wishlist.contains(user["id"], product_id)
    return SuccessResponse(data=WishlistResponse(product_id=product_id, in_wishlist=in_wishlist))

# Store follows
@app.post("/stores/{store_id}/follow", response_model=SuccessResponse[FollowResponse])
async def toggle_follow(
    store_id: str,
    user: dict = Depends(get_current_user),
    follows: StoreFollowStore = Depends(get_follows),
    catalog: ProductCatalog = Depends(get_catalog),
):
    if not await catalog.get_stores([store_id]):
        raise NotFoundException(f"Store {store_id} not found")
    following = await follows.toggle(user["id"], store_id)
    return SuccessResponse(data=FollowResponse(store_id=store_id, following=following))

@app.get("/stores/{store_id}/follow", response_model=SuccessResponse[FollowResponse])
async def check_follow(
    store_id: str,
    user: dict = Depends(get_current_user),
    follows: StoreFollowStore = Depends(get_follows),
):
    following = await follows.contains(user["id"], store_id)
    return SuccessResponse(data=FollowResponse(store_id=store_id, following=following))

@app.get("/follows", response_model=SuccessResponse[List[StoreSnapshot]])
async def list_followed_stores(
    user: dict = Depends(get_current_user),
    follows: StoreFollowStore = Depends(get_follows),
    catalog: ProductCatalog = Depends(get_catalog),
):
    store_ids = await follows.list_store_ids(user["id"])
    stores = await catalog.get_stores(store_ids)
    return SuccessResponse(data=[stores[sid] for sid in store_ids if sid in stores])

# Reviews
@app.post("/products/{product_id}/reviews", response_model=SuccessResponse[ReviewResponse])
@limiter.limit("20/minute")
async def post_review(
    request: Request,
    product_id: str,
    review: ReviewCreate,
    user: dict = Depends(get_current_user),
    reviews: ReviewStore = Depends(get_reviews),
    catalog: ProductCatalog = Depends(get_catalog),
):
    if await catalog.get(product_id) is None:
        raise NotFoundException(f"Product {product_id} not found")
    saved = await reviews.add(user["id"], product_id, review.rating, review.comment)
    return SuccessResponse(data=ReviewResponse.from_review(saved), message="Review saved")

@app.get("/products/{product_id}/reviews", response_model=SuccessResponse[ReviewListResponse])
async def list_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    reviews: ReviewStore = Depends(get_reviews),
):
    summary = await reviews.summary(product_id)
    items = await reviews.list_for_product(product_id, (page - 1) * limit, limit)
    return SuccessResponse(data=ReviewListResponse(
        product_id=product_id,
        average_rating=summary.average,
        review_count=summary.count,
        reviews=[ReviewResponse.from_review(r) for r in items],
    ))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    push_status = "configured" if settings.PUSH_FUNCTION_URL else "disabled"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        database=db_status,
        dependencies={"push-function": push_status}
    )
