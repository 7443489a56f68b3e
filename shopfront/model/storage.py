from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import structlog

from ..config import Settings
from ..infra.sql import SqlEngine, make_async_engine
from .catalog import new_catalog
from .jsonfile import JsonDocumentStore
from .ledger import new_ledger

logger = structlog.get_logger(__name__)


@dataclass
class Storage:
    backend: str
    catalog: object
    ledger: object
    doc: Optional[JsonDocumentStore] = None
    sql: Optional[SqlEngine] = None


@asynccontextmanager
async def open_storage(settings: Settings) -> AsyncIterator[Storage]:
    """Catalog and ledger over one backing store and one write lock."""
    backend = settings.store_backend
    if backend == "sql":
        sql = make_async_engine(settings.database_url)
        if sql.engine.url.get_backend_name() == "sqlite":
            db_path = sql.engine.url.database
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        await sql.create_schema()
        logger.info("storage ready", backend="sql",
                    url=sql.engine.url.render_as_string(hide_password=True))
        try:
            yield Storage(
                backend=backend,
                catalog=new_catalog(backend="sql", sql=sql,
                                    min_price_cents=settings.min_price_cents),
                ledger=new_ledger(backend="sql", sql=sql),
                sql=sql,
            )
        finally:
            await sql.dispose()
    elif backend == "json":
        doc = JsonDocumentStore(settings.data_file)
        await doc.read()
        logger.info("storage ready", backend="json", path=settings.data_file)
        yield Storage(
            backend=backend,
            catalog=new_catalog(backend="json", doc=doc,
                                min_price_cents=settings.min_price_cents),
            ledger=new_ledger(backend="json", doc=doc),
            doc=doc,
        )
    else:
        raise RuntimeError(f"unknown STORE_BACKEND: {backend!r}")
