from __future__ import annotations
from typing import Callable, List, Optional

from ...errors import ConflictError
from ...helpers import now_ts
from ..catalog._jsonfile import decrement_in_document, find_product
from ..jsonfile import Document, JsonDocumentStore
from ..schemas import Order
from ._common import Transition, check_transition, takes_stock


def _find_order_index(doc: Document, order_id: str) -> Optional[int]:
    for i, o in enumerate(doc["orders"]):
        if o.get("id") == order_id:
            return i
    return None


class OrderLedger:
    def __init__(self, doc: JsonDocumentStore,
                 clock: Callable[[], float] = now_ts) -> None:
        self.doc = doc
        self.clock = clock

    async def create_order(self, order: Order) -> str:
        order.check_pending_invariants()
        record = order.model_dump(mode="json")

        def _append(doc: Document) -> None:
            if _find_order_index(doc, order.id) is not None:
                raise ConflictError(f"order {order.id} already exists")
            doc["orders"].append(record)

        await self.doc.mutate(_append)
        return order.id

    async def get_order(self, order_id: str) -> Optional[Order]:
        doc = await self.doc.read()
        idx = _find_order_index(doc, order_id)
        return Order(**doc["orders"][idx]) if idx is not None else None

    async def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        doc = await self.doc.read()
        # appended in creation order; reverse first so equal timestamps
        # still come out newest-first after the stable sort
        orders = [Order(**o) for o in reversed(doc["orders"])]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders if limit is None else orders[:limit]

    async def update_order_status(self, order_id: str,
                                  transition: Transition) -> Optional[Order]:
        def _update(doc: Document) -> Optional[Order]:
            idx = _find_order_index(doc, order_id)
            if idx is None:
                return None
            before = Order(**doc["orders"][idx])
            stock = {}
            for item in before.items:
                p = find_product(doc, item.product_id)
                stock[item.product_id] = (
                    int(p.get("inventory", 0)) if p is not None else 0
                )

            after = transition(before, stock)
            if after is None:
                return before
            check_transition(before, after)

            doc["orders"][idx] = after.model_dump(mode="json")
            if takes_stock(before, after):
                ts = after.paid_at or self.clock()
                for item in after.items:
                    decrement_in_document(doc, item.product_id, item.qty, ts)
            return after

        return await self.doc.mutate(_update)
