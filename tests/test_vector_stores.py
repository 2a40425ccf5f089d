"""Behaviour shared by every vector store backend, plus backend specifics."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from codesearch.app.adapters.jsonl_store import LOG_FILENAME, JsonlVectorStore
from codesearch.app.adapters.sqlite_store import SQLiteVectorStore, open_vector_store
from codesearch.app.ports.vector_store import VectorRecord
from codesearch.errors import DimensionMismatch, NotFound, StorageUnavailable


def _record(identifier: str, *values: float, version: int = 1, **metadata) -> VectorRecord:
    return VectorRecord(
        id=identifier,
        vector=np.asarray(values, dtype=np.float32),
        metadata=dict(metadata),
        version=version,
        content_hash=f"hash-{identifier}-{version}",
        model="test-model",
    )


@pytest.fixture(params=["jsonl", "sqlite"])
def store_factory(request, temp_dir: Path):
    opened = []

    def factory():
        if request.param == "jsonl":
            store = JsonlVectorStore(temp_dir / "store", dimensions=3)
        else:
            store = SQLiteVectorStore(temp_dir / "vectors.db", dimensions=3)
        opened.append(store)
        return store

    yield factory
    for store in opened:
        store.close()


def test_put_get_replace_delete(store_factory):
    store = store_factory()
    store.put(_record("a", 1, 2, 3, path="a.py"))
    store.put(_record("a", 4, 5, 6, version=2, path="a.py"))

    record = store.get("a")
    assert record.version == 2
    assert np.array_equal(record.vector, np.asarray([4, 5, 6], dtype=np.float32))
    assert record.metadata == {"path": "a.py"}
    assert record.content_hash == "hash-a-2"
    assert record.model == "test-model"
    assert store.count() == 1

    assert store.delete("a") is True
    assert store.delete("a") is False
    with pytest.raises(NotFound):
        store.get("a")


def test_survives_reopen(store_factory):
    store = store_factory()
    for i in range(5):
        store.put(_record(f"id-{i}", i, i + 1, i + 2, lang="rust"))
    store.delete("id-3")
    store.close()

    reopened = store_factory()
    ids = sorted(record.id for record in reopened.scan())
    assert ids == ["id-0", "id-1", "id-2", "id-4"]
    assert np.array_equal(reopened.get("id-4").vector, np.asarray([4, 5, 6], dtype=np.float32))


def test_scan_is_a_snapshot(store_factory):
    store = store_factory()
    store.put(_record("a", 1, 1, 1))
    records = store.scan()
    store.put(_record("b", 2, 2, 2))
    assert [record.id for record in records] == ["a"]


def test_rejects_wrong_dimension(store_factory):
    store = store_factory()
    with pytest.raises(DimensionMismatch):
        store.put(_record("a", 1, 2))
    assert store.count() == 0


def test_closed_store_is_unavailable(store_factory):
    store = store_factory()
    store.close()
    with pytest.raises(StorageUnavailable):
        store.get("a")


def test_returned_records_are_copies(store_factory):
    store = store_factory()
    store.put(_record("a", 1, 2, 3, path="a.py"))
    record = store.get("a")
    record.vector[0] = 99
    record.metadata["path"] = "changed"
    assert store.get("a").vector[0] == 1
    assert store.get("a").metadata == {"path": "a.py"}


# -- JSONL specifics ---------------------------------------------------------


def test_jsonl_tolerates_torn_tail(temp_dir: Path):
    directory = temp_dir / "store"
    store = JsonlVectorStore(directory)
    store.put(_record("a", 1, 0, 0))
    store.put(_record("b", 0, 1, 0))
    store.close()

    log = directory / LOG_FILENAME
    with open(log, "a", encoding="utf-8") as fh:
        fh.write('{"op":"put","record":{"id":"c","vec')

    reopened = JsonlVectorStore(directory)
    assert sorted(r.id for r in reopened.scan()) == ["a", "b"]

    # The next write lands on a clean line.
    reopened.put(_record("c", 0, 0, 1))
    reopened.close()
    lines = log.read_text(encoding="utf-8").splitlines()
    assert all(json.loads(line) for line in lines)
    assert sorted(r.id for r in JsonlVectorStore(directory).scan()) == ["a", "b", "c"]


def test_jsonl_tolerates_tail_torn_inside_multibyte_character(temp_dir: Path):
    directory = temp_dir / "store"
    store = JsonlVectorStore(directory)
    store.put(_record("a", 1, 0, 0))
    store.put(_record("b", 0, 1, 0, path="café.py"))
    store.close()

    log = directory / LOG_FILENAME
    data = log.read_bytes()
    cut = data.index("é".encode("utf-8")) + 1
    log.write_bytes(data[:cut])

    reopened = JsonlVectorStore(directory)
    assert [r.id for r in reopened.scan()] == ["a"]

    reopened.put(_record("b", 0, 1, 0, path="café.py"))
    reopened.close()
    lines = log.read_text(encoding="utf-8").splitlines()
    assert all(json.loads(line) for line in lines)
    assert JsonlVectorStore(directory).get("b").metadata == {"path": "café.py"}


def test_jsonl_corruption_in_the_middle_is_an_error(temp_dir: Path):
    directory = temp_dir / "store"
    directory.mkdir()
    (directory / LOG_FILENAME).write_text('not json\n{"op":"delete","id":"x"}\n', encoding="utf-8")

    with pytest.raises(StorageUnavailable):
        JsonlVectorStore(directory)


def test_jsonl_compaction_keeps_live_records(temp_dir: Path):
    directory = temp_dir / "store"
    store = JsonlVectorStore(directory, min_compaction_lines=1000)
    for i in range(10):
        store.put(_record("hot", i, 0, 0, version=i + 1))
    store.put(_record("cold", 0, 1, 0))
    store.delete("cold")
    assert store.log_lines == 12

    before = {r.id: r for r in store.scan()}
    assert store.compact() == 1
    assert store.log_lines == 1
    store.close()

    after = {r.id: r for r in JsonlVectorStore(directory).scan()}
    assert after.keys() == before.keys()
    assert after["hot"].version == 10
    assert np.array_equal(after["hot"].vector, before["hot"].vector)


def test_jsonl_compacts_automatically(temp_dir: Path):
    store = JsonlVectorStore(temp_dir / "store", compaction_ratio=0.5, min_compaction_lines=8)
    for i in range(20):
        store.put(_record("same", i, 0, 0, version=i + 1))

    assert store.log_lines < 8
    assert store.get("same").version == 20


def test_jsonl_lock_timeout(temp_dir: Path):
    import threading

    store = JsonlVectorStore(temp_dir / "store")
    held = threading.Event()
    release = threading.Event()

    def hold() -> None:
        with store._locked(None):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=hold)
    thread.start()
    held.wait(5)
    try:
        with pytest.raises(StorageUnavailable):
            store.get("a", timeout=0.05)
    finally:
        release.set()
        thread.join()


# -- store selection ---------------------------------------------------------


def test_open_vector_store_selects_backend(temp_dir: Path):
    sqlite_by_uri = open_vector_store(f"sqlite:///{temp_dir / 'a.db'}")
    sqlite_by_suffix = open_vector_store(temp_dir / "b.sqlite")
    jsonl = open_vector_store(temp_dir / "dir-store")
    try:
        assert isinstance(sqlite_by_uri, SQLiteVectorStore)
        assert sqlite_by_uri.path == temp_dir / "a.db"
        assert isinstance(sqlite_by_suffix, SQLiteVectorStore)
        assert isinstance(jsonl, JsonlVectorStore)
    finally:
        for store in (sqlite_by_uri, sqlite_by_suffix, jsonl):
            store.close()
