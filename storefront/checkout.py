"""
Checkout: split the cart per store and place one order per store.

Orders are inserted one store at a time. There is no transaction across
stores, so a failure part way leaves the earlier orders placed; only those
stores' lines leave the cart, the rest stay for a retry.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from pymongo.errors import PyMongoError

from shared.utils import AppException, PersistenceTimeout, settings
from storefront.catalog import ProductCatalog
from storefront.errors import CheckoutFailure, CheckoutValidationError, PartialCheckoutFailure
from storefront.ledger import OrderLedger
from storefront.models import Cart, DeliveryType, OrderDB, OrderDraft, OrderItemDB
from storefront.notifications import PushNotifier
from storefront.reconciler import CartReconciler
from storefront.saga import SagaStep, run_saga
from storefront.schemas import ShippingInfo
from storefront.splitter import format_date_stamp, group_by_store, split_cart

logger = logging.getLogger(__name__)

SELF_PICK_ADDRESS = "Self-pick at Store"


@dataclass
class CheckoutResult:
    order_ids: List[str] = field(default_factory=list)
    # False when the ordered lines could not be taken out of the cart
    cart_updated: bool = True


def validate_checkout(user_id: Optional[str], delivery_type: DeliveryType, shipping_info: ShippingInfo):
    if not user_id:
        raise CheckoutValidationError("Please log in to place an order")
    if not shipping_info.contact_number:
        raise CheckoutValidationError("A contact number is required")
    if delivery_type == DeliveryType.DELIVERY and not shipping_info.shipping_address:
        raise CheckoutValidationError("A shipping address is required for home delivery")


def draft_to_order(
    draft: OrderDraft, buyer_id: str, delivery_type: DeliveryType, shipping_info: ShippingInfo
) -> OrderDB:
    if delivery_type == DeliveryType.SELF_PICK:
        address = SELF_PICK_ADDRESS
    else:
        address = shipping_info.shipping_address
    return OrderDB(
        display_id=draft.display_id,
        buyer_id=buyer_id,
        store_id=draft.store_id,
        items=[
            OrderItemDB(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                price=line.unit_price,
                delivery_charge=line.delivery_charge,
            )
            for line in draft.lines
        ],
        subtotal=draft.subtotal,
        delivery_charges=draft.delivery_charges,
        total_amount=draft.total_amount,
        delivery_type=delivery_type,
        shipping_address=address,
        contact_number=shipping_info.contact_number,
        payment_method=shipping_info.payment_method,
        status=draft.status,
    )


class CheckoutService:
    def __init__(
        self,
        ledger: OrderLedger,
        reconciler: CartReconciler,
        catalog: ProductCatalog,
        notifier: PushNotifier,
        today: Callable[[], date] = date.today,
    ):
        self.ledger = ledger
        self.reconciler = reconciler
        self.catalog = catalog
        self.notifier = notifier
        self.today = today

    async def checkout(
        self,
        user_id: Optional[str],
        cart: Cart,
        delivery_type: DeliveryType,
        shipping_info: ShippingInfo,
    ) -> CheckoutResult:
        validate_checkout(user_id, delivery_type, shipping_info)
        if cart.is_empty:
            return CheckoutResult()

        day = self.today()
        groups = group_by_store(cart.lines)
        try:
            sequence_start = await self.ledger.reserve_sequence(day.isoformat(), len(groups))
        except PyMongoError as e:
            logger.exception("Could not reserve order numbers", extra={"user_id": user_id})
            raise CheckoutFailure(next(iter(groups)), str(e)) from e
        drafts = split_cart(cart.lines, delivery_type, sequence_start, format_date_stamp(day))

        steps = [
            SagaStep(
                key=draft.store_id,
                action=self._insert_step(draft_to_order(draft, user_id, delivery_type, shipping_info)),
            )
            for draft in drafts
        ]
        outcome = await run_saga(steps)
        placed = dict(zip(outcome.committed_keys, drafts))

        reason = str(outcome.error)
        if not outcome.succeeded and not outcome.committed:
            raise CheckoutFailure(outcome.failed_key, reason)

        cart_updated = await self._drop_ordered_lines(user_id, cart, outcome.committed_keys)

        if outcome.succeeded:
            await self._notify_sellers(placed.values())
            logger.info(
                f"Checkout placed {len(drafts)} order(s)",
                extra={"user_id": user_id},
            )
            return CheckoutResult(outcome.committed_values, cart_updated=cart_updated)

        await self._notify_sellers(placed.values())
        logger.error(
            f"Partial checkout: {len(outcome.committed)} of {len(drafts)} order(s) placed",
            extra={"user_id": user_id, "store_id": outcome.failed_key},
        )
        raise PartialCheckoutFailure(
            succeeded_store_ids=outcome.committed_keys,
            order_ids=outcome.committed_values,
            failed_store_id=outcome.failed_key,
            not_attempted_store_ids=outcome.not_attempted,
            reason=reason,
            cart_updated=cart_updated,
        )

    async def _drop_ordered_lines(self, user_id: str, cart: Cart, store_ids: List[str]) -> bool:
        # Only the ordered lines of this snapshot leave the cart, lines added meanwhile stay
        product_ids = cart.product_ids_for_stores(store_ids)
        try:
            remaining = await self.reconciler.remove_many(cart.owner, product_ids)
        except PersistenceTimeout:
            remaining = None
        if remaining is None or not remaining.synced:
            logger.error(
                "Placed orders are still in the cart",
                extra={"user_id": user_id, "store_id": ",".join(store_ids)},
            )
            return False
        return True

    def _insert_step(self, order: OrderDB):
        async def insert():
            order_id = await self.ledger.insert_order(order)
            logger.info(
                "Order placed",
                extra={"order_id": order_id, "display_id": order.display_id, "store_id": order.store_id},
            )
            return order_id
        return insert

    async def _notify_sellers(self, drafts):
        for draft in drafts:
            try:
                owner_id = await self.catalog.store_owner(draft.store_id)
            except (PyMongoError, AppException):
                logger.warning("Could not look up store owner", extra={"store_id": draft.store_id}, exc_info=True)
                continue
            if owner_id is None:
                continue
            await self.notifier.notify(
                owner_id,
                "New order received",
                f"Order #{draft.display_id} for {draft.total_amount}",
                f"{settings.PUBLIC_APP_URL}/seller/dashboard",
            )
