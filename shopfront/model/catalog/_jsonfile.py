from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from ...errors import ConflictError, NotFound
from ...helpers import now_ts, slugify
from ..jsonfile import Document, JsonDocumentStore
from ..schemas import Product, ProductIn, ProductPatch
from ._common import check_product_fields


# ---- document helpers (shared with the JSON ledger)
def find_product(doc: Document, product_id: str) -> Optional[Dict[str, Any]]:
    for p in doc["products"]:
        if p.get("id") == product_id:
            return p
    return None


def decrement_in_document(doc: Document, product_id: str, qty: int,
                          ts: float) -> Optional[Dict[str, Any]]:
    p = find_product(doc, product_id)
    if p is None:
        return None
    p["inventory"] = max(0, int(p.get("inventory", 0)) - qty)
    p["updated_at"] = ts
    return p


class Catalog:
    def __init__(self, doc: JsonDocumentStore, min_price_cents: int,
                 clock: Callable[[], float] = now_ts) -> None:
        self.doc = doc
        self.min_price_cents = min_price_cents
        self.clock = clock

    async def list_products(self) -> List[Product]:
        doc = await self.doc.read()
        return [Product(**p) for p in doc["products"]]

    async def list_active_products(self) -> List[Product]:
        return [p for p in await self.list_products() if p.active]

    async def get_product(self, product_id: str) -> Optional[Product]:
        p = find_product(await self.doc.read(), product_id)
        return Product(**p) if p is not None else None

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

        def _create(doc: Document) -> Product:
            if find_product(doc, product.id) is not None:
                raise ConflictError(f"product {product.id} already exists")
            doc["products"].append(product.model_dump())
            return product

        return await self.doc.mutate(_create)

    async def update_product(self, product_id: str,
                             changes: ProductPatch) -> Product:
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        check_product_fields(fields.get("price_cents"),
                             fields.get("inventory"), self.min_price_cents)
        ts = self.clock()

        def _update(doc: Document) -> Product:
            p = find_product(doc, product_id)
            if p is None:
                raise NotFound(f"product {product_id} not found")
            p.update(fields)
            p["updated_at"] = ts
            return Product(**p)

        return await self.doc.mutate(_update)

    async def delete_product(self, product_id: str) -> None:
        def _delete(doc: Document) -> None:
            before = len(doc["products"])
            doc["products"] = [
                p for p in doc["products"] if p.get("id") != product_id
            ]
            if len(doc["products"]) == before:
                raise NotFound(f"product {product_id} not found")

        await self.doc.mutate(_delete)

    async def decrement_inventory(self, product_id: str, qty: int) -> Product:
        ts = self.clock()

        def _decrement(doc: Document) -> Product:
            p = decrement_in_document(doc, product_id, qty, ts)
            if p is None:
                raise NotFound(f"product {product_id} not found")
            return Product(**p)

        return await self.doc.mutate(_decrement)
