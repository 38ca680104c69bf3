import logging
from typing import List

from shared.utils import ForbiddenException, NotFoundException, settings
from storefront.catalog import ProductCatalog
from storefront.errors import InvalidStatusTransition
from storefront.ledger import OrderLedger
from storefront.models import OrderDB, OrderStatus
from storefront.notifications import PushNotifier

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    OrderStatus.ACCEPTED: "has been accepted by the store",
    OrderStatus.DISPATCHED: "is on its way",
    OrderStatus.DELIVERED: "has been delivered",
}


class OrderService:
    """Buyer and seller views of placed orders, and the seller-facing status flow."""

    def __init__(self, ledger: OrderLedger, catalog: ProductCatalog, notifier: PushNotifier):
        self.ledger = ledger
        self.catalog = catalog
        self.notifier = notifier

    async def get_for_buyer(self, order_id: str, buyer_id: str) -> OrderDB:
        order = await self.ledger.get_order(order_id)
        if order is None or order.buyer_id != buyer_id:
            raise NotFoundException("Order not found")
        return order

    async def list_for_store(self, store_id: str, seller_id: str, skip: int, limit: int) -> List[OrderDB]:
        await self._require_store_owner(store_id, seller_id)
        return await self.ledger.list_for_store(store_id, skip, limit)

    async def advance_status(self, order_id: str, new_status: OrderStatus, seller_id: str) -> OrderDB:
        order = await self.ledger.get_order(order_id)
        if order is None:
            raise NotFoundException("Order not found")
        await self._require_store_owner(order.store_id, seller_id)

        # Linear flow: only ever one stage forward
        if order.status.next != new_status:
            raise InvalidStatusTransition(order.status.value, new_status.value)

        updated = await self.ledger.transition_status(order_id, order.status, new_status)
        if updated is None:
            # Someone else moved it first; report against what is there now
            latest = await self.ledger.get_order(order_id)
            current = latest.status.value if latest else order.status.value
            raise InvalidStatusTransition(current, new_status.value)

        logger.info(
            f"Order moved {order.status.value} -> {new_status.value}",
            extra={"order_id": order_id, "store_id": order.store_id, "user_id": seller_id},
        )
        await self.notifier.notify(
            updated.buyer_id,
            f"Order #{updated.display_id}",
            f"Your order {STATUS_MESSAGES[new_status]}",
            f"{settings.PUBLIC_APP_URL}/orders/{order_id}",
        )
        return updated

    async def _require_store_owner(self, store_id: str, user_id: str):
        owner_id = await self.catalog.store_owner(store_id)
        if owner_id is None:
            raise NotFoundException("Store not found")
        if owner_id != user_id:
            raise ForbiddenException("Only the store owner can manage its orders")
