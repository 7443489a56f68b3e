from __future__ import annotations
from typing import Callable, Dict, List, Optional

from sqlalchemy import select

from ...errors import ConflictError
from ...helpers import now_ts
from ...infra.sql import SqlEngine
from ..db import OrderRow, ProductRow
from ..schemas import Order
from ._common import Transition, check_transition, takes_stock


class OrderLedger:
    def __init__(self, sql: SqlEngine,
                 clock: Callable[[], float] = now_ts) -> None:
        self.sql = sql
        self.clock = clock

    async def create_order(self, order: Order) -> str:
        order.check_pending_invariants()
        async with self.sql.write() as session:
            if await session.get(OrderRow, order.id) is not None:
                raise ConflictError(f"order {order.id} already exists")
            session.add(OrderRow.from_model(order))
        return order.id

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self.sql.read() as session:
            row = await session.get(OrderRow, order_id)
            return row.to_model() if row is not None else None

    async def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        stmt = select(OrderRow).order_by(OrderRow.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.sql.read() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [r.to_model() for r in rows]

    async def update_order_status(self, order_id: str,
                                  transition: Transition) -> Optional[Order]:
        lock = self.sql.supports_row_locks
        async with self.sql.write() as session:
            stmt = select(OrderRow).where(OrderRow.id == order_id)
            if lock:
                stmt = stmt.with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            before = row.to_model()

            ids = sorted({i.product_id for i in before.items})
            pstmt = select(ProductRow).where(ProductRow.id.in_(ids))
            if lock:
                pstmt = pstmt.with_for_update()
            products: Dict[str, ProductRow] = {
                p.id: p for p in (await session.execute(pstmt)).scalars()
            }
            stock = {
                pid: (products[pid].inventory if pid in products else 0)
                for pid in ids
            }

            after = transition(before, stock)
            if after is None:
                return before
            check_transition(before, after)

            row.apply(after)
            if takes_stock(before, after):
                ts = after.paid_at or self.clock()
                for item in after.items:
                    p = products.get(item.product_id)
                    if p is None:
                        continue
                    p.inventory = max(0, p.inventory - item.qty)
                    p.updated_at = ts
        return after
