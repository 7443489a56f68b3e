"""
Checkout: re-prices an untrusted cart against the catalog, opens a payment
session and records the pending order.

Reservation is advisory. Stock is checked here but only taken when the
payment is confirmed, so two shoppers can both get a session for the last
unit; the confirmation handler decides which one gets it.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

import structlog

from .errors import (
    CartProblem, CartRejected, InsufficientStock, OutOfStock,
    ProductUnavailable, UpstreamTimeout, ValidationError,
)
from .helpers import new_order_id, now_ts
from .mockpay import LineItem, PaymentAdapter
from .model.schemas import CartLine, Order, OrderItem

logger = structlog.get_logger(__name__)

MIN_LINE_QTY = 1
MAX_LINE_QTY = 99


@dataclass
class ResolvedCart:
    items: List[OrderItem]
    subtotal_cents: int


@dataclass
class CheckoutSession:
    order: Order
    redirect_url: str


def clamp_qty(qty: int, max_qty: int = MAX_LINE_QTY) -> int:
    return max(MIN_LINE_QTY, min(int(qty), max_qty))


def merge_lines(lines: Sequence[CartLine]) -> Dict[str, int]:
    # first-seen order is kept; duplicates add up
    merged: Dict[str, int] = {}
    for line in lines:
        pid = line.id.strip()
        merged[pid] = merged.get(pid, 0) + int(line.qty)
    return merged


async def resolve_cart(catalog, lines: Sequence[CartLine],
                       max_qty: int = MAX_LINE_QTY) -> ResolvedCart:
    if not lines:
        raise ValidationError("cart is empty")

    items: List[OrderItem] = []
    problems: List[CartProblem] = []
    for pid, requested in merge_lines(lines).items():
        if not pid:
            raise ValidationError("cart line without product id")
        qty = clamp_qty(requested, max_qty)
        product = await catalog.get_product(pid)
        if product is None or not product.active:
            problems.append(ProductUnavailable(
                pid, f"{pid} is no longer available"
            ))
            continue
        if product.inventory <= 0:
            problems.append(OutOfStock(pid, f"{product.name} is sold out"))
            continue
        if qty > product.inventory:
            problems.append(InsufficientStock(
                pid,
                f"only {product.inventory} of {product.name} left",
                available=product.inventory,
            ))
            continue
        items.append(OrderItem(
            product_id=product.id,
            name=product.name,
            unit_price_cents=product.price_cents,
            qty=qty,
        ))

    if problems:
        raise CartRejected(problems)
    return ResolvedCart(
        items=items,
        subtotal_cents=sum(i.line_total_cents for i in items),
    )


class CheckoutService:
    def __init__(self, catalog, ledger, adapter: PaymentAdapter, *,
                 currency: str, public_base_url: str,
                 max_qty: int = MAX_LINE_QTY,
                 timeout_seconds: float = 5.0,
                 clock: Callable[[], float] = now_ts) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.adapter = adapter
        self.currency = currency
        self.public_base_url = public_base_url.rstrip("/")
        self.max_qty = max_qty
        self.timeout = timeout_seconds
        self.clock = clock

    async def _bounded(self, what: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("upstream call timed out", call=what,
                           timeout_s=self.timeout)
            raise UpstreamTimeout(f"{what} timed out, please retry")

    async def start(self, lines: Sequence[CartLine]) -> CheckoutSession:
        try:
            resolved = await self._bounded(
                "catalog lookup",
                resolve_cart(self.catalog, lines, self.max_qty),
            )
        except CartRejected as e:
            logger.info("checkout rejected",
                        problems=[p.to_dict() for p in e.problems])
            raise

        order_id = new_order_id()
        line_items: List[LineItem] = [
            {"name": i.name, "unit_amount": i.unit_price_cents,
             "quantity": i.qty}
            for i in resolved.items
        ]
        session = await self._bounded(
            "payment session",
            self.adapter.create_checkout_session(
                line_items,
                success_url=(
                    f"{self.public_base_url}/success?order_id={order_id}"
                ),
                cancel_url=f"{self.public_base_url}/cart?canceled=1",
                correlation_id=order_id,
                currency=self.currency,
            ),
        )

        order = Order.new_pending(
            order_id=order_id,
            items=resolved.items,
            currency=self.currency,
            created_at=self.clock(),
            payment_session_id=session["payment_session_id"],
        )
        await self.ledger.create_order(order)
        logger.info("order created", order_id=order.id,
                    subtotal_cents=order.subtotal_cents,
                    payment_session_id=order.payment_session_id)
        return CheckoutSession(order=order,
                               redirect_url=session["redirect_url"])
