from __future__ import annotations
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...errors import ConflictError, NotFound
from ...helpers import now_ts, slugify
from ...infra.sql import SqlEngine
from ..db import ProductRow
from ..schemas import Product, ProductIn, ProductPatch
from ._common import check_product_fields


async def decrement_in_session(session: AsyncSession, product_id: str,
                               qty: int, ts: float,
                               for_update: bool) -> Optional[ProductRow]:
    stmt = select(ProductRow).where(ProductRow.id == product_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is None:
        return None
    row.inventory = max(0, row.inventory - qty)
    row.updated_at = ts
    return row


class Catalog:
    def __init__(self, sql: SqlEngine, min_price_cents: int,
                 clock: Callable[[], float] = now_ts) -> None:
        self.sql = sql
        self.min_price_cents = min_price_cents
        self.clock = clock

    async def list_products(self) -> List[Product]:
        async with self.sql.read() as session:
            rows = (await session.execute(
                select(ProductRow).order_by(
                    ProductRow.created_at, ProductRow.id
                )
            )).scalars().all()
            return [r.to_model() for r in rows]

    async def list_active_products(self) -> List[Product]:
        async with self.sql.read() as session:
            rows = (await session.execute(
                select(ProductRow)
                .where(ProductRow.active.is_(True))
                .order_by(ProductRow.created_at, ProductRow.id)
            )).scalars().all()
            return [r.to_model() for r in rows]

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self.sql.read() as session:
            row = await session.get(ProductRow, product_id)
            return row.to_model() if row is not None else None

    async def create_product(self, data: ProductIn) -> Product:
        check_product_fields(data.price_cents, data.inventory,
                             self.min_price_cents)
        ts = self.clock()
        product = Product(
            **data.model_dump(exclude={"id"}),
            id=(data.id or "").strip() or slugify(data.name),
            created_at=ts,
            updated_at=ts,
        )
        async with self.sql.write() as session:
            if await session.get(ProductRow, product.id) is not None:
                raise ConflictError(f"product {product.id} already exists")
            session.add(ProductRow(**product.model_dump()))
        return product

    async def update_product(self, product_id: str,
                             changes: ProductPatch) -> Product:
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        check_product_fields(fields.get("price_cents"),
                             fields.get("inventory"), self.min_price_cents)
        async with self.sql.write() as session:
            row = await session.get(ProductRow, product_id)
            if row is None:
                raise NotFound(f"product {product_id} not found")
            for k, v in fields.items():
                setattr(row, k, v)
            row.updated_at = self.clock()
            product = row.to_model()
        return product

    async def delete_product(self, product_id: str) -> None:
        async with self.sql.write() as session:
            result = await session.execute(
                delete(ProductRow).where(ProductRow.id == product_id)
            )
            if result.rowcount == 0:
                raise NotFound(f"product {product_id} not found")

    async def decrement_inventory(self, product_id: str, qty: int) -> Product:
        async with self.sql.write() as session:
            row = await decrement_in_session(
                session, product_id, qty, self.clock(),
                for_update=self.sql.supports_row_locks,
            )
            if row is None:
                raise NotFound(f"product {product_id} not found")
            product = row.to_model()
        return product
