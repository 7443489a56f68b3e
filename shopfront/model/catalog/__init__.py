# model/catalog/__init__.py
from typing import Optional

from ..jsonfile import JsonDocumentStore
from ...infra.sql import SqlEngine


# Factory keeps server.py simple and constructor-agnostic:
def new_catalog(*, backend: str = "json",
                doc: Optional[JsonDocumentStore] = None,
                sql: Optional[SqlEngine] = None,
                min_price_cents: int = 50):
    backend = backend.lower()
    if backend == "sql":
        if sql is None:
            raise RuntimeError("Catalog(sql) requires sql=SqlEngine")
        from ._sql import Catalog
        return Catalog(sql=sql, min_price_cents=min_price_cents)
    else:
        if doc is None:
            raise RuntimeError("Catalog(json) requires doc=JsonDocumentStore")
        from ._jsonfile import Catalog
        return Catalog(doc=doc, min_price_cents=min_price_cents)


__all__ = ["new_catalog"]
