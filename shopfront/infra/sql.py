from __future__ import annotations
import os
import asyncio
from dataclasses import dataclass, field
from typing import AsyncContextManager, AsyncIterator, Callable

import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
)
from contextlib import asynccontextmanager

from ..errors import PersistenceError

logger = structlog.get_logger(__name__)

Gated = Callable[[], AsyncContextManager[None]]


def normalize_async_url(url: str) -> str:
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        # allow Heroku-style URLs
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


# DB-GATE: never queue more coroutines on the pool than it can serve
@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()


@dataclass
class SqlEngine:
    engine: AsyncEngine
    sessions: async_sessionmaker
    gated: Gated
    supports_row_locks: bool
    # the single in-process ordering point for catalog + ledger mutations
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        async with self.gated():
            async with self.sessions() as session:
                yield session

    @asynccontextmanager
    async def write(self) -> AsyncIterator[AsyncSession]:
        """
        One transaction behind the write lock. Commits on normal exit, rolls
        back when the body raises. Driver failures surface as
        PersistenceError.
        """
        async with self.write_lock, self.gated():
            try:
                async with self.sessions() as session:
                    async with session.begin():
                        yield session
            except SQLAlchemyError as e:
                logger.error("database write failed", error=str(e))
                raise PersistenceError("database write failed") from e

    async def create_schema(self) -> None:
        from ..model.db import Base
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def make_async_engine(database_url: str) -> SqlEngine:
    db_url = normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    pool_size = None
    postgres = db_url.startswith("postgresql+asyncpg://")
    if postgres:
        pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )

    engine = create_async_engine(db_url, **kw)

    if db_url.startswith("sqlite+aiosqlite://"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=5000;")
            # FULL: a committed order survives power loss, not only a crash
            cur.execute("PRAGMA synchronous=FULL;")
            cur.close()

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # gate defaults to the pool size on postgres
    if pool_size is None:
        gate_limit = int(os.getenv("DB_GATE_LIMIT", "10"))
    else:
        gate_limit = int(os.getenv("DB_GATE_LIMIT", pool_size))
    db_gate = asyncio.Semaphore(max(1, gate_limit))

    def gated():
        return _gated(db_gate)

    return SqlEngine(
        engine=engine,
        sessions=sessions,
        gated=gated,
        supports_row_locks=postgres,
    )
