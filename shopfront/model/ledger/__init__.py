# model/ledger/__init__.py
from typing import Optional

from ..jsonfile import JsonDocumentStore
from ...infra.sql import SqlEngine
from ._common import Transition, check_transition


# Factory keeps server.py simple and constructor-agnostic:
def new_ledger(*, backend: str = "json",
               doc: Optional[JsonDocumentStore] = None,
               sql: Optional[SqlEngine] = None):
    backend = backend.lower()
    if backend == "sql":
        if sql is None:
            raise RuntimeError("OrderLedger(sql) requires sql=SqlEngine")
        from ._sql import OrderLedger
        return OrderLedger(sql=sql)
    else:
        if doc is None:
            raise RuntimeError(
                "OrderLedger(json) requires doc=JsonDocumentStore"
            )
        from ._jsonfile import OrderLedger
        return OrderLedger(doc=doc)


__all__ = ["new_ledger", "Transition", "check_transition"]
