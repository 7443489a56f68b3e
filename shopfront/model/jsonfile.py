# model/jsonfile.py
"""
Single-document JSON store: `{"products": [...], "orders": [...]}`.

- one asyncio.Lock is the only write path; waiters are served FIFO, so every
  read-modify-write-persist cycle runs to completion before the next starts
- writes go to a temp file in the same directory, are fsynced, and then
  os.replace()d over the store. A reader (or a restarted process) sees the
  old document or the new one, never a torn file
- readers are served from the last committed document, so a read that starts
  after a write returned sees that write
- no cross-process consistency: one process owns the file
"""

from __future__ import annotations
import asyncio
import contextlib
import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import orjson
import structlog

from ..errors import PersistenceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Document = Dict[str, Any]


def empty_document() -> Document:
    return {"products": [], "orders": []}


def read_document(path: Path) -> Document:
    if not path.exists():
        return empty_document()
    raw = path.read_bytes()
    if not raw.strip():
        return empty_document()
    doc = orjson.loads(raw)
    if not isinstance(doc, dict):
        raise ValueError("store root must be an object")
    doc.setdefault("products", [])
    doc.setdefault("orders", [])
    return doc


def _fsync_dir(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_document_atomic(path: Path, doc: Document) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = orjson.dumps(doc, option=orjson.OPT_INDENT_2)
    fd, tmp = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    # the new document is already in place past this point
    try:
        _fsync_dir(path.parent)
    except OSError as e:
        logger.error("store directory fsync failed", path=str(path),
                     error=str(e))


class JsonDocumentStore:
    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._doc: Optional[Document] = None

    async def _load_locked(self) -> Document:
        if self._doc is None:
            try:
                self._doc = await asyncio.to_thread(read_document, self.path)
            except (OSError, ValueError) as e:
                logger.error("store unreadable", path=str(self.path),
                             error=str(e))
                raise PersistenceError("store is unreadable") from e
        return self._doc

    async def read(self) -> Document:
        """Last committed document. Treat as read-only."""
        if self._doc is None:
            async with self._lock:
                return await self._load_locked()
        return self._doc

    async def mutate(self, fn: Callable[[Document], T]) -> T:
        """
        Run `fn` on a private copy of the document and commit the copy.

        If `fn` raises, nothing is written. If `fn` leaves the document
        unchanged, nothing is written either. A failed write raises
        PersistenceError and the committed document stays as it was.
        """
        async with self._lock:
            current = await self._load_locked()
            doc = copy.deepcopy(current)
            result = fn(doc)
            if doc == current:
                return result
            try:
                await asyncio.to_thread(write_document_atomic, self.path, doc)
            except OSError as e:
                logger.error("store write failed", path=str(self.path),
                             error=str(e))
                raise PersistenceError("could not persist store") from e
            self._doc = doc
            return result
