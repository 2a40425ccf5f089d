"""Append-only JSONL vector store.

Every ``put`` and ``delete`` appends one operation line to
``<directory>/vectors.jsonl`` and fsyncs it before the in-memory table is
updated. Opening the store replays the log. A torn final line (a crash in
the middle of an append) is ignored and then removed by rewriting the log,
so later appends never land on a partial record.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import IO, Any

from codesearch.app.ports.vector_store import VectorRecord, VectorStorePort
from codesearch.errors import DimensionMismatch, NotFound, StorageUnavailable
from codesearch.utils.jsonl import append_jsonl, atomic_write_jsonl, read_jsonl

logger = logging.getLogger(__name__)

LOG_FILENAME = "vectors.jsonl"


def _copy(record: VectorRecord) -> VectorRecord:
    return replace(record, vector=record.vector.copy(), metadata=dict(record.metadata))


def _ends_with_newline(path: Path) -> bool:
    size = path.stat().st_size
    if size == 0:
        return True
    with open(path, "rb") as fh:
        fh.seek(size - 1)
        return fh.read(1) == b"\n"


class JsonlVectorStore(VectorStorePort):
    """Durable vector store backed by an append-only JSON-lines log."""

    def __init__(
        self,
        directory: Path,
        *,
        dimensions: int | None = None,
        compaction_ratio: float = 0.5,
        min_compaction_lines: int = 64,
        default_timeout: float | None = None,
        fsync: bool = True,
    ) -> None:
        if not 0.0 < compaction_ratio <= 1.0:
            raise ValueError("compaction_ratio must be within (0, 1]")
        self._directory = Path(directory)
        self._path = self._directory / LOG_FILENAME
        self._dim = dimensions
        self._compaction_ratio = compaction_ratio
        self._min_compaction_lines = min_compaction_lines
        self._default_timeout = default_timeout
        self._fsync = fsync

        self._lock = threading.RLock()
        self._records: dict[str, VectorRecord] = {}
        self._log_lines = 0
        self._handle: IO[str] | None = None
        # Set when an append failed midway; the log is rewritten before the next write.
        self._needs_rewrite = False
        self._closed = False

        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            self._replay()
        except OSError as exc:
            raise StorageUnavailable(f"Cannot open vector store at {self._directory}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._path

    @property
    def log_lines(self) -> int:
        return self._log_lines

    def _replay(self) -> None:
        if not self._path.exists():
            return

        try:
            for line_num, entry in enumerate(read_jsonl(self._path), start=1):
                self._apply(entry, line_num)
        except ValueError as exc:
            raise StorageUnavailable(f"Vector log {self._path} is corrupt: {exc}") from exc

        if not _ends_with_newline(self._path):
            logger.warning("Vector log %s ends with a torn record; rewriting", self._path)
            self._needs_rewrite = True

        logger.debug(
            "Replayed %d log lines into %d records from %s",
            self._log_lines,
            len(self._records),
            self._path,
        )

    def _apply(self, entry: dict[str, Any], line_num: int) -> None:
        op = entry.get("op")
        try:
            if op == "put":
                record = VectorRecord.from_json(entry["record"])
                self._records[record.id] = record
            elif op == "delete":
                self._records.pop(str(entry["id"]), None)
            else:
                raise ValueError(f"unknown op {op!r}")
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"bad operation at line {line_num}: {exc}") from exc
        self._log_lines += 1

    @contextmanager
    def _locked(self, timeout: float | None) -> Iterator[None]:
        timeout = self._default_timeout if timeout is None else timeout
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise StorageUnavailable(f"Timed out after {timeout}s waiting for the vector store")
        try:
            if self._closed:
                raise StorageUnavailable("Vector store is closed")
            yield
        finally:
            self._lock.release()

    def _writer(self) -> IO[str]:
        if self._needs_rewrite:
            self._rewrite()
        if self._handle is None:
            self._handle = open(self._path, "a", encoding="utf-8")
        return self._handle

    def _append(self, entry: dict[str, Any]) -> None:
        try:
            append_jsonl(self._writer(), entry, fsync=self._fsync)
        except OSError as exc:
            self._needs_rewrite = True
            self._close_handle()
            raise StorageUnavailable(f"Failed to append to {self._path}: {exc}") from exc
        self._log_lines += 1

    def _rewrite(self) -> None:
        self._close_handle()
        records = [
            {"op": "put", "record": record.to_json()}
            for record in sorted(self._records.values(), key=lambda r: r.id)
        ]
        before = self._log_lines
        self._log_lines = atomic_write_jsonl(self._path, records)
        self._needs_rewrite = False
        logger.info(
            "Compacted %s: %d log lines -> %d live records", self._path, before, self._log_lines
        )

    def _maybe_compact(self) -> None:
        if self._log_lines < self._min_compaction_lines:
            return
        dead = self._log_lines - len(self._records)
        if dead / self._log_lines > self._compaction_ratio:
            try:
                self._rewrite()
            except OSError as exc:
                # The append log itself is intact; only the rewrite failed.
                logger.warning("Automatic compaction of %s failed: %s", self._path, exc)

    def _close_handle(self) -> None:
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.close()

    def put(self, record: VectorRecord, *, timeout: float | None = None) -> None:
        if self._dim is not None and record.vector.shape[0] != self._dim:
            raise DimensionMismatch(self._dim, int(record.vector.shape[0]), context=record.id)
        stored = _copy(record)
        with self._locked(timeout):
            self._append({"op": "put", "record": stored.to_json()})
            self._records[stored.id] = stored
            self._maybe_compact()

    def get(self, identifier: str, *, timeout: float | None = None) -> VectorRecord:
        with self._locked(timeout):
            record = self._records.get(identifier)
            if record is None:
                raise NotFound(identifier)
            return _copy(record)

    def delete(self, identifier: str, *, timeout: float | None = None) -> bool:
        with self._locked(timeout):
            if identifier not in self._records:
                return False
            self._append({"op": "delete", "id": identifier})
            del self._records[identifier]
            self._maybe_compact()
            return True

    def scan(self, *, timeout: float | None = None) -> Iterator[VectorRecord]:
        with self._locked(timeout):
            snapshot = [_copy(record) for record in self._records.values()]
        return iter(snapshot)

    def count(self, *, timeout: float | None = None) -> int:
        with self._locked(timeout):
            return len(self._records)

    def compact(self, *, timeout: float | None = None) -> int:
        """Rewrite the log to hold only live records. Returns the record count."""
        with self._locked(timeout):
            try:
                self._rewrite()
            except OSError as exc:
                raise StorageUnavailable(f"Failed to compact {self._path}: {exc}") from exc
            return self._log_lines

    def close(self) -> None:
        with self._lock:
            self._close_handle()
            self._closed = True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(directory={str(self._directory)!r})"
