from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from storefront.models import Cart, DeliveryType, OrderDB, OrderStatus, ReviewDB

class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

class CartItemUpdate(BaseModel):
    # Zero or negative removes the line
    quantity: int

class CartLineResponse(BaseModel):
    product_id: str
    store_id: str
    name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    delivery_charge: Decimal
    line_total: Decimal

class CartResponse(BaseModel):
    owner_kind: str
    items: List[CartLineResponse]
    total: Decimal
    line_count: int
    unit_count: int
    synced: bool = True

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartResponse":
        return cls(
            owner_kind=cart.owner.kind,
            items=[
                CartLineResponse(
                    product_id=line.product_id,
                    store_id=line.store_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    delivery_charge=line.delivery_charge,
                    line_total=line.line_total,
                )
                for line in cart.lines
            ],
            total=cart.total,
            line_count=cart.line_count,
            unit_count=cart.unit_count,
            synced=cart.synced,
        )

class ShippingInfo(BaseModel):
    shipping_address: Optional[str] = None
    contact_number: Optional[str] = None
    payment_method: str = "COD"

    @field_validator('shipping_address', 'contact_number', 'payment_method')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CheckoutRequest(ShippingInfo):
    delivery_type: DeliveryType = DeliveryType.DELIVERY

class CheckoutResponse(BaseModel):
    order_ids: List[str]
    # False when the placed lines could not be removed from the cart
    cart_updated: bool = True

class OrderItemResponse(BaseModel):
    product_id: str
    name: Optional[str] = None
    quantity: int
    price: Decimal
    delivery_charge: Decimal

class OrderResponse(BaseModel):
    id: str
    display_id: str
    buyer_id: str
    store_id: str
    items: List[OrderItemResponse]
    subtotal: Decimal
    delivery_charges: Decimal
    total_amount: Decimal
    delivery_type: DeliveryType
    shipping_address: str
    contact_number: str
    payment_method: str
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: OrderDB) -> "OrderResponse":
        return cls(**order.model_dump(exclude={"items"}), items=[
            OrderItemResponse(**item.model_dump()) for item in order.items
        ])

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class SessionResponse(BaseModel):
    user_id: str
    cart: CartResponse

class WishlistResponse(BaseModel):
    product_id: str
    in_wishlist: bool

class FollowResponse(BaseModel):
    store_id: str
    following: bool

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)

    @field_validator('comment')
    def sanitize_comment(cls, v):
        return sanitize_input(v)

class ReviewResponse(BaseModel):
    id: str
    product_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_review(cls, review: ReviewDB) -> "ReviewResponse":
        return cls(**review.model_dump())

class ReviewListResponse(BaseModel):
    product_id: str
    average_rating: Optional[Decimal] = None
    review_count: int
    reviews: List[ReviewResponse]
