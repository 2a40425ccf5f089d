"""SQLite vector store and store selection by URI."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from codesearch.app.adapters.jsonl_store import JsonlVectorStore
from codesearch.app.ports.vector_store import VectorRecord, VectorStorePort
from codesearch.errors import DimensionMismatch, NotFound, StorageUnavailable

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite:///"
SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    id TEXT PRIMARY KEY,
    dim INTEGER NOT NULL,
    vector BLOB NOT NULL,
    metadata TEXT NOT NULL,
    version INTEGER NOT NULL,
    content_hash TEXT,
    model TEXT,
    updated_at TEXT NOT NULL
)
"""

_COLUMNS = "id, dim, vector, metadata, version, content_hash, model, updated_at"


def _row_to_record(row: tuple) -> VectorRecord:
    identifier, dim, blob, metadata, version, content_hash, model, updated_at = row
    vector = np.frombuffer(blob, dtype=np.float32).copy()
    if vector.shape[0] != dim:
        raise StorageUnavailable(
            f"Stored vector for {identifier!r} has {vector.shape[0]} values, expected {dim}"
        )
    return VectorRecord(
        id=identifier,
        vector=vector,
        metadata=json.loads(metadata),
        version=int(version),
        content_hash=content_hash,
        model=model,
        updated_at=updated_at,
    )


class SQLiteVectorStore(VectorStorePort):
    """Vector store with one row per id in a WAL-mode SQLite database.

    Vectors are stored as raw float32 blobs and metadata as JSON text. One
    connection is shared behind a lock; each operation is its own
    transaction.
    """

    def __init__(
        self,
        path: Path,
        *,
        dimensions: int | None = None,
        default_timeout: float | None = None,
    ) -> None:
        self._path = Path(path)
        self._dim = dimensions
        self._default_timeout = default_timeout
        self._lock = threading.Lock()
        self._closed = False
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._path),
                timeout=default_timeout or 5.0,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.execute(_SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"Cannot open SQLite store at {self._path}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connection(self, timeout: float | None) -> Iterator[sqlite3.Connection]:
        timeout = self._default_timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            raise StorageUnavailable(f"Timed out after {timeout}s waiting for the vector store")
        try:
            if self._closed:
                raise StorageUnavailable("Vector store is closed")
            yield self._conn
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"SQLite operation on {self._path} failed: {exc}") from exc
        finally:
            self._lock.release()

    def put(self, record: VectorRecord, *, timeout: float | None = None) -> None:
        vector = np.ascontiguousarray(record.vector, dtype=np.float32)
        if self._dim is not None and vector.shape[0] != self._dim:
            raise DimensionMismatch(self._dim, int(vector.shape[0]), context=record.id)
        params = (
            record.id,
            int(vector.shape[0]),
            vector.tobytes(),
            json.dumps(record.metadata, sort_keys=True, ensure_ascii=False),
            record.version,
            record.content_hash,
            record.model,
            record.updated_at,
        )
        with self._connection(timeout) as conn:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    f"INSERT INTO vectors ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET dim=excluded.dim, vector=excluded.vector, "
                    "metadata=excluded.metadata, version=excluded.version, "
                    "content_hash=excluded.content_hash, model=excluded.model, "
                    "updated_at=excluded.updated_at",
                    params,
                )

    def get(self, identifier: str, *, timeout: float | None = None) -> VectorRecord:
        with self._connection(timeout) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM vectors WHERE id = ?", (identifier,)
            ).fetchone()
        if row is None:
            raise NotFound(identifier)
        return _row_to_record(row)

    def delete(self, identifier: str, *, timeout: float | None = None) -> bool:
        with self._connection(timeout) as conn:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                cursor = conn.execute("DELETE FROM vectors WHERE id = ?", (identifier,))
                return cursor.rowcount > 0

    def scan(self, *, timeout: float | None = None) -> Iterator[VectorRecord]:
        with self._connection(timeout) as conn:
            rows = conn.execute(f"SELECT {_COLUMNS} FROM vectors ORDER BY id").fetchall()
        return (_row_to_record(row) for row in rows)

    def count(self, *, timeout: float | None = None) -> int:
        with self._connection(timeout) as conn:
            (total,) = conn.execute("SELECT COUNT(*) FROM vectors").fetchone()
        return int(total)

    def compact(self, *, timeout: float | None = None) -> int:
        """Reclaim free pages. Returns the record count."""
        with self._connection(timeout) as conn:
            conn.execute("VACUUM")
            (total,) = conn.execute("SELECT COUNT(*) FROM vectors").fetchone()
        logger.info("Vacuumed %s (%d records)", self._path, total)
        return int(total)

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={str(self._path)!r})"


def open_vector_store(
    location: str | Path,
    *,
    dimensions: int | None = None,
    compaction_ratio: float = 0.5,
    default_timeout: float | None = None,
) -> JsonlVectorStore | SQLiteVectorStore:
    """Open the store named by ``location``.

    ``sqlite:///path.db`` or a path ending in ``.db``/``.sqlite`` selects
    SQLite; anything else is treated as a JSONL store directory.
    """
    text = str(location)
    if text.startswith(SQLITE_PREFIX):
        return SQLiteVectorStore(
            Path(text[len(SQLITE_PREFIX):]), dimensions=dimensions, default_timeout=default_timeout
        )
    path = Path(text).expanduser()
    if path.suffix.lower() in SQLITE_SUFFIXES:
        return SQLiteVectorStore(path, dimensions=dimensions, default_timeout=default_timeout)
    return JsonlVectorStore(
        path,
        dimensions=dimensions,
        compaction_ratio=compaction_ratio,
        default_timeout=default_timeout,
    )
