import asyncio
import os

import orjson
import pytest

from shopfront.errors import PersistenceError
from shopfront.model import jsonfile
from shopfront.model.jsonfile import JsonDocumentStore


def add_product(pid):
    def _fn(doc):
        doc["products"].append({"id": pid})
        return pid
    return _fn


def on_disk(path):
    return orjson.loads(path.read_bytes())


def leftovers(path):
    return [p for p in os.listdir(path.parent) if p.endswith(".tmp")]


def test_missing_file_reads_as_empty(tmp_path):
    store = JsonDocumentStore(tmp_path / "store.json")
    doc = asyncio.run(store.read())
    assert doc == {"products": [], "orders": []}


def test_mutation_is_persisted_and_visible_after_restart(tmp_path):
    path = tmp_path / "nested" / "store.json"

    async def write():
        store = JsonDocumentStore(path)
        assert await store.mutate(add_product("a")) == "a"
        return await store.read()

    assert asyncio.run(write())["products"] == [{"id": "a"}]
    assert on_disk(path)["products"] == [{"id": "a"}]
    assert asyncio.run(JsonDocumentStore(path).read())["products"] == [
        {"id": "a"}
    ]


def test_no_change_means_no_write(tmp_path, monkeypatch):
    path = tmp_path / "store.json"
    calls = []
    monkeypatch.setattr(jsonfile, "write_document_atomic",
                        lambda p, d: calls.append(p))

    asyncio.run(JsonDocumentStore(path).mutate(lambda doc: None))
    assert calls == []


def test_exception_in_mutation_writes_nothing(tmp_path):
    path = tmp_path / "store.json"

    def half_done(doc):
        doc["products"].append({"id": "partial"})
        raise RuntimeError("boom")

    async def scenario():
        store = JsonDocumentStore(path)
        await store.mutate(add_product("a"))
        with pytest.raises(RuntimeError):
            await store.mutate(half_done)
        return await store.read()

    doc = asyncio.run(scenario())
    assert doc["products"] == [{"id": "a"}]
    assert on_disk(path)["products"] == [{"id": "a"}]


@pytest.mark.parametrize("target", ["os.replace", "os.fsync"])
def test_failed_write_keeps_previous_document(target, tmp_path, monkeypatch):
    path = tmp_path / "store.json"

    def fail(*args, **kwargs):
        raise OSError(5, "I/O error")

    async def scenario():
        store = JsonDocumentStore(path)
        await store.mutate(add_product("a"))
        before = path.read_bytes()

        monkeypatch.setattr(target, fail)
        with pytest.raises(PersistenceError) as exc:
            await store.mutate(add_product("b"))
        monkeypatch.undo()
        return store, before, exc.value

    store, before, err = asyncio.run(scenario())
    assert err.retryable is True
    assert path.read_bytes() == before
    assert leftovers(path) == []
    assert asyncio.run(store.read())["products"] == [{"id": "a"}]


def test_unreadable_store_is_a_persistence_error(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json")

    with pytest.raises(PersistenceError):
        asyncio.run(JsonDocumentStore(path).read())


def test_concurrent_mutations_are_serialized(tmp_path):
    path = tmp_path / "store.json"

    def bump(doc):
        doc.setdefault("counter", 0)
        doc["counter"] += 1

    async def scenario():
        store = JsonDocumentStore(path)
        await asyncio.gather(*[store.mutate(bump) for _ in range(25)])
        return await store.read()

    assert asyncio.run(scenario())["counter"] == 25
    assert on_disk(path)["counter"] == 25


def test_directory_fsync_failure_keeps_memory_and_disk_in_step(
        tmp_path, monkeypatch):
    path = tmp_path / "store.json"

    def fail(directory):
        raise OSError(5, "I/O error")

    monkeypatch.setattr(jsonfile, "_fsync_dir", fail)

    async def scenario():
        store = JsonDocumentStore(path)
        await store.mutate(add_product("a"))
        await store.mutate(add_product("b"))
        return await store.read()

    doc = asyncio.run(scenario())
    assert doc["products"] == [{"id": "a"}, {"id": "b"}]
    assert on_disk(path)["products"] == [{"id": "a"}, {"id": "b"}]
