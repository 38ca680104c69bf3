from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Literal, Union, Annotated
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryType(str, Enum):
    DELIVERY = "Delivery"
    SELF_PICK = "Self-pick"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"

    @property
    def next(self) -> Optional["OrderStatus"]:
        members = list(OrderStatus)
        index = members.index(self)
        if index + 1 < len(members):
            return members[index + 1]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.next is None


# --- Cart ---

class ProductSnapshot(BaseModel):
    """Live catalog view of a product, as charged at checkout."""
    id: str
    store_id: str
    name: str
    online_price: Decimal = Field(..., ge=0)
    delivery_charges: Decimal = Field(Decimal(0), ge=0)
    is_active: bool = True


class StoreSnapshot(BaseModel):
    id: str
    name: str
    owner_id: Optional[str] = None


class CartLine(BaseModel):
    product_id: str
    store_id: str
    unit_price: Decimal = Field(..., ge=0)
    delivery_charge: Decimal = Field(Decimal(0), ge=0)
    quantity: int = Field(..., ge=1)
    name: Optional[str] = None

    @classmethod
    def from_product(cls, product: ProductSnapshot, quantity: int) -> "CartLine":
        return cls(
            product_id=product.id,
            store_id=product.store_id,
            unit_price=product.online_price,
            delivery_charge=product.delivery_charges,
            quantity=quantity,
            name=product.name,
        )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class GuestOwner(BaseModel):
    kind: Literal["guest"] = "guest"
    device_key: str

    @property
    def key(self) -> str:
        return f"guest:{self.device_key}"


class UserOwner(BaseModel):
    kind: Literal["user"] = "user"
    user_id: str

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


CartOwner = Annotated[Union[GuestOwner, UserOwner], Field(discriminator="kind")]


class Cart(BaseModel):
    owner: CartOwner
    lines: List[CartLine] = []
    # False when returned after a backend failure, the view may be stale
    synced: bool = True

    def get(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal(0))

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def unit_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def store_ids(self) -> List[str]:
        seen = []
        for line in self.lines:
            if line.store_id not in seen:
                seen.append(line.store_id)
        return seen

    def product_ids_for_stores(self, store_ids: List[str]) -> List[str]:
        wanted = set(store_ids)
        return [line.product_id for line in self.lines if line.store_id in wanted]


# --- Orders ---

class OrderDraft(BaseModel):
    store_id: str
    display_id: str
    lines: List[CartLine]
    subtotal: Decimal
    delivery_charges: Decimal
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING


class OrderItemDB(BaseModel):
    product_id: str
    name: Optional[str] = None
    quantity: int
    price: Decimal
    delivery_charge: Decimal = Decimal(0)


class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    display_id: str
    buyer_id: str
    store_id: str
    items: List[OrderItemDB]
    subtotal: Decimal
    delivery_charges: Decimal
    total_amount: Decimal
    delivery_type: DeliveryType
    shipping_address: str
    contact_number: str
    payment_method: str = "COD"
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


# --- Reviews ---

class ReviewDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
