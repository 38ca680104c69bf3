"""
Multi-store checkout splitting.

An order never spans stores, so a cart is partitioned by store and every
group becomes its own order draft. Display ids are `<YYYYMD><sequence>`,
where the sequence counts orders created that day across the whole
marketplace and continues consecutively over the groups of one checkout.
"""
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Iterable, List

from storefront.models import CartLine, DeliveryType, OrderDraft, OrderStatus


def format_date_stamp(day: date) -> str:
    # No zero padding: 5 Jan 2025 is "202515"
    return f"{day.year}{day.month}{day.day}"


def group_by_store(lines: Iterable[CartLine]) -> "OrderedDict[str, List[CartLine]]":
    groups: "OrderedDict[str, List[CartLine]]" = OrderedDict()
    for line in lines:
        groups.setdefault(line.store_id, []).append(line)
    return groups


def split_cart(
    lines: Iterable[CartLine],
    delivery_type: DeliveryType,
    daily_order_sequence_start: int,
    date_stamp: str,
) -> List[OrderDraft]:
    """
    Partition cart lines into one pending draft per store.

    Stores keep the order in which they first appear in the cart. The draft
    at index i gets sequence `daily_order_sequence_start + 1 + i`; the start
    must be the number of orders already taken for the day.
    """
    drafts = []
    for index, (store_id, store_lines) in enumerate(group_by_store(lines).items()):
        subtotal = sum((line.line_total for line in store_lines), Decimal(0))
        if delivery_type == DeliveryType.SELF_PICK:
            delivery_charges = Decimal(0)
        else:
            delivery_charges = sum((line.delivery_charge for line in store_lines), Decimal(0))

        drafts.append(OrderDraft(
            store_id=store_id,
            display_id=f"{date_stamp}{daily_order_sequence_start + 1 + index}",
            lines=list(store_lines),
            subtotal=subtotal,
            delivery_charges=delivery_charges,
            total_amount=subtotal + delivery_charges,
            status=OrderStatus.PENDING,
        ))
    return drafts
