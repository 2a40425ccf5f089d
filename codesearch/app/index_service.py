"""Index builder: keeps the vector store and the similarity index in step.

Write order is always store first, index second. The store is the source of
truth; ``recover()`` rebuilds the index from ``store.scan()`` so a crash
between the two writes is repaired at the next start.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from pydantic import BaseModel

from codesearch.app.ports.document import Document
from codesearch.app.ports.embedding import EmbeddingPort
from codesearch.app.ports.similarity_index import IndexEntry, SimilarityIndexPort
from codesearch.app.ports.vector_store import VectorRecord, VectorStorePort, utc_now_iso
from codesearch.errors import (
    CodeSearchError,
    DimensionMismatch,
    IngestCancelled,
    IngestError,
    InvalidDocument,
    NotFound,
)
from codesearch.utils.hashing import compute_text_digest

logger = logging.getLogger(__name__)


class IngestReceipt(BaseModel):
    """What a successful ingestion did."""

    id: str
    version: int
    model: str
    content_hash: str
    reused_embedding: bool = False
    changed: bool = True


class RebuildReport(BaseModel):
    """Summary of an index rebuild from the vector store."""

    loaded: int
    skipped: int
    duration_ms: float
    completed_at: str


class HealthStatus(BaseModel):
    """Readiness probe payload."""

    ready: bool
    indexed: int
    dimensions: int
    model: str
    index_backend: str
    last_rebuild: RebuildReport | None = None


@dataclass(slots=True)
class IngestOutcome:
    """Per-document result of ``ingest_many``."""

    id: str
    receipt: IngestReceipt | None = None
    error: IngestError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class _Prepared:
    document: Document
    metadata: dict[str, Any]
    digest: str
    vector: np.ndarray
    reused: bool


class IndexService:
    """Ingests, deletes and prunes documents; rebuilds the index on startup.

    Mutations are serialised by a writer lock, so the service is the single
    logical writer for its store and index. Queries do not take this lock;
    they only take the index's read lock.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingPort,
        store: VectorStorePort,
        index: SimilarityIndexPort,
        embed_timeout: float | None = None,
        storage_timeout: float | None = None,
        batch_size: int = 32,
    ) -> None:
        if embedder.dimensions != index.dimensions:
            raise DimensionMismatch(index.dimensions, embedder.dimensions, context="embedder")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.embedder = embedder
        self.store = store
        self.index = index
        self._embed_timeout = embed_timeout
        self._storage_timeout = storage_timeout
        self._batch_size = batch_size
        self._writer = threading.RLock()
        self._ready = threading.Event()
        self._last_rebuild: RebuildReport | None = None

    # -- readiness -----------------------------------------------------------

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def recover(self) -> RebuildReport:
        """Rebuild the similarity index from the vector store."""
        start = time.perf_counter()
        with self._writer:
            skipped = 0
            entries: list[IndexEntry] = []
            for record in self.store.scan(timeout=self._storage_timeout):
                if record.vector.shape[0] != self.index.dimensions:
                    logger.warning(
                        "Skipping %s during rebuild: dimension %d != %d",
                        record.id,
                        record.vector.shape[0],
                        self.index.dimensions,
                    )
                    skipped += 1
                    continue
                entries.append(IndexEntry(record.id, record.vector, record.metadata))
            loaded = self.index.bulk_load(entries)
            report = RebuildReport(
                loaded=loaded,
                skipped=skipped,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                completed_at=utc_now_iso(),
            )
            self._last_rebuild = report
            self._ready.set()

        logger.info(
            "Rebuilt index from store: %d entries (%d skipped) in %.1f ms",
            report.loaded,
            report.skipped,
            report.duration_ms,
        )
        return report

    rebuild = recover

    def health(self) -> HealthStatus:
        return HealthStatus(
            ready=self.is_ready(),
            indexed=len(self.index),
            dimensions=self.index.dimensions,
            model=self.embedder.model_id,
            index_backend=type(self.index).__name__,
            last_rebuild=self._last_rebuild,
        )

    # -- ingestion -----------------------------------------------------------

    def ingest(
        self, document: Document, *, cancel: threading.Event | None = None
    ) -> IngestReceipt:
        """Embed, persist and index one document.

        Raises:
            IngestError: Wrapping the failure; prior state is left untouched
        """
        try:
            metadata = self._validate(document)
            previous = self._lookup(document.id)
            digest = compute_text_digest(document.text)
            if self._can_reuse(previous, digest):
                vector = previous.vector
                reused = True
            else:
                self._check_cancel(cancel, document.id)
                vector = self.embedder.embed(document.text, timeout=self._embed_timeout)
                reused = False
            return self._commit(_Prepared(document, metadata, digest, vector, reused), cancel)
        except IngestError:
            raise
        except CodeSearchError as exc:
            raise IngestError(document.id, exc) from exc

    def ingest_many(
        self, documents: Iterable[Document], *, cancel: threading.Event | None = None
    ) -> list[IngestOutcome]:
        """Ingest documents in embedding batches, reporting per-document outcomes."""
        docs = list(documents)
        outcomes: list[IngestOutcome] = []
        for start in range(0, len(docs), self._batch_size):
            outcomes.extend(self._ingest_batch(docs[start : start + self._batch_size], cancel))

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning("Ingested %d/%d documents", len(outcomes) - failed, len(outcomes))
        else:
            logger.debug("Ingested %d documents", len(outcomes))
        return outcomes

    def _ingest_batch(
        self, batch: Sequence[Document], cancel: threading.Event | None
    ) -> list[IngestOutcome]:
        results: list[IngestOutcome] = [IngestOutcome(id=str(doc.id)) for doc in batch]
        ready: dict[int, _Prepared] = {}
        to_embed: list[tuple[int, dict[str, Any], str]] = []

        for position, document in enumerate(batch):
            try:
                metadata = self._validate(document)
                previous = self._lookup(document.id)
                digest = compute_text_digest(document.text)
                if self._can_reuse(previous, digest):
                    ready[position] = _Prepared(document, metadata, digest, previous.vector, True)
                else:
                    to_embed.append((position, metadata, digest))
            except CodeSearchError as exc:
                results[position].error = IngestError(str(document.id), exc)

        if to_embed and cancel is not None and cancel.is_set():
            for position, _, _ in to_embed:
                results[position].error = IngestError(
                    batch[position].id, IngestCancelled("Ingestion cancelled before embedding")
                )
            to_embed = []

        if to_embed:
            try:
                embedded = self.embedder.embed_many(
                    [batch[position].text for position, _, _ in to_embed],
                    timeout=self._embed_timeout,
                )
            except CodeSearchError as exc:
                for position, _, _ in to_embed:
                    results[position].error = IngestError(batch[position].id, exc)
            else:
                for (position, metadata, digest), outcome in zip(to_embed, embedded, strict=True):
                    if outcome.ok:
                        ready[position] = _Prepared(
                            batch[position], metadata, digest, outcome.unwrap(), False
                        )
                    else:
                        results[position].error = IngestError(batch[position].id, outcome.error)

        for position in sorted(ready):
            prepared = ready[position]
            try:
                results[position].receipt = self._commit(prepared, cancel)
            except CodeSearchError as exc:
                results[position].error = IngestError(prepared.document.id, exc)
        return results

    def _commit(self, prepared: _Prepared, cancel: threading.Event | None) -> IngestReceipt:
        document = prepared.document
        vector = np.asarray(prepared.vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.index.dimensions:
            actual = int(vector.shape[-1]) if vector.ndim else 0
            raise DimensionMismatch(self.index.dimensions, actual, context=document.id)

        metadata = prepared.metadata
        model = self.embedder.model_id
        with self._writer:
            current = self._lookup(document.id)
            unchanged_text = (
                current is not None
                and current.content_hash == prepared.digest
                and current.model == model
            )
            if unchanged_text and current.metadata == metadata and document.id in self.index:
                return IngestReceipt(
                    id=document.id,
                    version=current.version,
                    model=model,
                    content_hash=prepared.digest,
                    reused_embedding=prepared.reused,
                    changed=False,
                )

            if unchanged_text:
                version = current.version
            else:
                version = (current.version if current is not None else 0) + 1

            # Past this point the store and index writes both happen.
            self._check_cancel(cancel, document.id)
            record = VectorRecord(
                id=document.id,
                vector=vector,
                metadata=metadata,
                version=version,
                content_hash=prepared.digest,
                model=model,
            )
            self.store.put(record, timeout=self._storage_timeout)
            self.index.upsert(document.id, vector, metadata)

        logger.debug("Indexed %s at version %d", document.id, version)
        return IngestReceipt(
            id=document.id,
            version=version,
            model=model,
            content_hash=prepared.digest,
            reused_embedding=prepared.reused,
        )

    # -- deletion ------------------------------------------------------------

    def delete(self, identifier: str) -> bool:
        """Remove a document from store then index. Unknown ids are a no-op."""
        with self._writer:
            existed = self.store.delete(identifier, timeout=self._storage_timeout)
            removed = self.index.remove(identifier)
        if existed or removed:
            logger.debug("Deleted %s", identifier)
        return existed or removed

    def prune(self, keep_ids: Iterable[str]) -> list[str]:
        """Delete every stored document whose id is not in ``keep_ids``."""
        keep = set(keep_ids)
        removed: list[str] = []
        with self._writer:
            stale = sorted(
                record.id
                for record in self.store.scan(timeout=self._storage_timeout)
                if record.id not in keep
            )
            for identifier in stale:
                self.delete(identifier)
                removed.append(identifier)
            # Index entries without a store record are dropped too.
            for identifier in self.index.ids():
                if identifier not in keep:
                    self.index.remove(identifier)
        if removed:
            logger.info("Pruned %d documents", len(removed))
        return removed

    def lookup(self, identifier: str) -> VectorRecord:
        """Return the stored record for ``identifier`` or raise ``NotFound``."""
        return self.store.get(identifier, timeout=self._storage_timeout)

    # -- helpers -------------------------------------------------------------

    def _lookup(self, identifier: str) -> VectorRecord | None:
        try:
            return self.store.get(identifier, timeout=self._storage_timeout)
        except NotFound:
            return None

    def _can_reuse(self, previous: VectorRecord | None, digest: str) -> bool:
        return (
            previous is not None
            and previous.content_hash == digest
            and previous.model == self.embedder.model_id
            and previous.vector.shape[0] == self.index.dimensions
        )

    @staticmethod
    def _validate(document: Document) -> dict[str, Any]:
        """Check a document and return its metadata as the store will return it."""
        if not isinstance(document.id, str) or not document.id.strip():
            raise InvalidDocument(f"Document id must be a non-empty string; got {document.id!r}")
        if not isinstance(document.text, str) or not document.text.strip():
            raise InvalidDocument(f"Document {document.id!r} has empty text")
        if not isinstance(document.metadata, Mapping):
            raise InvalidDocument(f"Document {document.id!r} metadata must be a mapping")
        try:
            metadata = json.loads(json.dumps(dict(document.metadata)))
        except (TypeError, ValueError) as exc:
            raise InvalidDocument(
                f"Document {document.id!r} metadata is not JSON serialisable: {exc}"
            ) from exc
        return metadata

    @staticmethod
    def _check_cancel(cancel: threading.Event | None, identifier: str) -> None:
        if cancel is not None and cancel.is_set():
            raise IngestCancelled(f"Ingestion of {identifier!r} cancelled before storage write")
