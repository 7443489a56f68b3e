from typing import Callable, Dict, Optional

from ...errors import ValidationError
from ..schemas import Order, OrderStatus

# (stored order, current inventory per product in the order) -> new order,
# or None for "leave it as it is"
Transition = Callable[[Order, Dict[str, int]], Optional[Order]]


def check_transition(before: Order, after: Order) -> None:
    if after.id != before.id:
        raise ValidationError("a transition must not change the order id")
    if (after.items != before.items
            or after.subtotal_cents != before.subtotal_cents):
        raise ValidationError("order items are immutable after creation")
    if after.status is not before.status:
        if before.status is not OrderStatus.PENDING:
            raise ValidationError(
                f"order {before.id} is {before.status.value}; "
                f"it cannot become {after.status.value}"
            )


def takes_stock(before: Order, after: Order) -> bool:
    return (before.status is OrderStatus.PENDING
            and after.status is OrderStatus.PAID)
