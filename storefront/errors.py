from typing import List, Optional

from fastapi import status

from shared.utils import AppException


class CheckoutValidationError(AppException):
    """Checkout request rejected before any network call."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class CheckoutFailure(AppException):
    """No order was persisted; the cart is untouched and the buyer can retry."""

    def __init__(self, store_id: Optional[str], reason: str):
        self.store_id = store_id
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "checkout_failed",
                "message": "Your order could not be placed, please try again",
                "failed_store_id": store_id,
            },
        )


class PartialCheckoutFailure(AppException):
    """
    Some stores' orders were placed before one failed.

    Lines of the succeeded stores are removed from the cart; lines of the
    failed and not attempted stores stay there for a retry. `cart_updated`
    is False when that removal failed and the placed lines are still in
    the cart too.
    """

    def __init__(
        self,
        succeeded_store_ids: List[str],
        order_ids: List[str],
        failed_store_id: str,
        not_attempted_store_ids: List[str],
        reason: str,
        cart_updated: bool = True,
    ):
        self.succeeded_store_ids = succeeded_store_ids
        self.order_ids = order_ids
        self.failed_store_id = failed_store_id
        self.not_attempted_store_ids = not_attempted_store_ids
        self.reason = reason
        self.cart_updated = cart_updated
        if cart_updated:
            message = "Some of your orders were placed, the rest are still in your cart"
        else:
            message = "Some of your orders were placed, but your cart could not be updated. Check your orders before retrying"
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "partial_checkout",
                "message": message,
                "succeeded_store_ids": succeeded_store_ids,
                "order_ids": order_ids,
                "failed_store_id": failed_store_id,
                "not_attempted_store_ids": not_attempted_store_ids,
                "cart_updated": cart_updated,
            },
        )

    @property
    def retained_store_ids(self) -> List[str]:
        return [self.failed_store_id] + self.not_attempted_store_ids


class InvalidStatusTransition(AppException):
    def __init__(self, current: str, requested: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move order from {current} to {requested}",
        )
