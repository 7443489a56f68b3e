"""
Payment confirmation: turns an authentic processor event into the one-way
`pending -> paid` transition of an order.

Delivery is at-least-once and may be reordered, so the handler is keyed by
the order id and decides inside the ledger's write ordering point:

- unknown order          -> logged and acknowledged
- order already terminal -> acknowledged, nothing written
- foreign session id     -> logged and acknowledged, nothing written
- order pending          -> paid (stock decremented in the same write), or
                            paid_unfulfilled when another order took the
                            last units first (no stock touched)

PersistenceError is not caught here: the callback must not be acknowledged
unless the write is durable, and the processor's retry is the recovery path.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from .helpers import now_ts
from .model.schemas import Customer, Order, OrderStatus, ShippingAddress

logger = structlog.get_logger(__name__)


@dataclass
class PaymentEvent:
    kind: str  # succeeded | failed | canceled
    order_id: str
    payment_session_id: str = ""
    idempotency_key: Optional[str] = None
    customer: Optional[Customer] = None
    shipping: Optional[ShippingAddress] = None
    amount_total: Optional[int] = None


@dataclass
class ConfirmationResult:
    # applied | unfulfilled | duplicate | unknown_order | session_mismatch |
    # ignored
    outcome: str
    order: Optional[Order] = None

    @property
    def status(self) -> Optional[str]:
        return self.order.status.value if self.order is not None else None


def covers_items(order: Order, stock: Dict[str, int]) -> bool:
    return all(stock.get(i.product_id, 0) >= i.qty for i in order.items)


class PaymentConfirmationHandler:
    def __init__(self, ledger, clock: Callable[[], float] = now_ts) -> None:
        self.ledger = ledger
        self.clock = clock

    async def handle(self, event: PaymentEvent) -> ConfirmationResult:
        log = logger.bind(order_id=event.order_id,
                          payment_session_id=event.payment_session_id,
                          event_id=event.idempotency_key)

        if event.kind != "succeeded":
            log.info("payment not completed; order stays pending",
                     kind=event.kind)
            return ConfirmationResult(outcome="ignored")

        if not event.order_id:
            log.warning("payment event without order id")
            return ConfirmationResult(outcome="unknown_order")

        applied = None
        mismatch = False

        def _confirm(order: Order, stock: Dict[str, int]) -> Optional[Order]:
            nonlocal applied, mismatch
            if order.status.is_terminal:
                return None
            if (event.payment_session_id and order.payment_session_id
                    and event.payment_session_id != order.payment_session_id):
                mismatch = True
                return None
            status = (
                OrderStatus.PAID if covers_items(order, stock)
                else OrderStatus.PAID_UNFULFILLED
            )
            applied = status
            return order.model_copy(update={
                "status": status,
                "paid_at": self.clock(),
                "customer": event.customer,
                "shipping": event.shipping,
                "payment_event_id": event.idempotency_key,
                "payment_session_id": (
                    order.payment_session_id or event.payment_session_id
                    or None
                ),
            })

        order = await self.ledger.update_order_status(event.order_id,
                                                      _confirm)
        if order is None:
            log.warning("payment event for unknown order")
            return ConfirmationResult(outcome="unknown_order")

        if mismatch:
            log.warning("payment session does not belong to order",
                        expected=order.payment_session_id,
                        amount_total=event.amount_total)
            return ConfirmationResult(outcome="session_mismatch", order=order)

        if applied is None:
            log.info("duplicate payment event", status=order.status.value)
            return ConfirmationResult(outcome="duplicate", order=order)

        if (event.amount_total is not None
                and event.amount_total != order.subtotal_cents):
            log.warning("paid amount differs from order subtotal",
                        amount_total=event.amount_total,
                        subtotal_cents=order.subtotal_cents)

        if applied is OrderStatus.PAID_UNFULFILLED:
            log.warning("order paid but stock ran out; needs refund",
                        items=[i.product_id for i in order.items])
            return ConfirmationResult(outcome="unfulfilled", order=order)

        log.info("order paid", subtotal_cents=order.subtotal_cents)
        return ConfirmationResult(outcome="applied", order=order)
