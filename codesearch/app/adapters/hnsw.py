"""hnswlib-based approximate index implementing SimilarityIndexPort."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np

from codesearch.app.adapters.exact_index import ExactIndex
from codesearch.app.ports.similarity_index import IndexEntry, SearchHit
from codesearch.errors import InvalidQuery
from codesearch.index.filters import MetadataFilter, compile_filter
from codesearch.index.metrics import (
    DistanceMetric,
    MetricInput,
    as_vector,
    normalize_metric,
    score_rows,
    select_top_k,
)
from codesearch.index.vector_table import VectorTable

logger = logging.getLogger(__name__)

_SPACES = {
    DistanceMetric.COSINE: "cosine",
    DistanceMetric.L2: "l2",
    DistanceMetric.DOT: "ip",
}
_MIN_CAPACITY = 64


def _load_hnswlib() -> Any:
    try:
        import hnswlib
    except ImportError as exc:  # pragma: no cover - declared dependency
        raise RuntimeError("hnswlib is required for the hnsw index backend. Install 'hnswlib'.") from exc
    return hnswlib


class HNSWIndex(ExactIndex):
    """In-memory HNSW graph kept in step with an exact row table.

    The graph proposes candidates; their scores are recomputed exactly from
    the table and ordered with the usual id tie-break. Queries fall back to
    the exact scan when they override the configured metric or when the
    graph returns fewer matching candidates than it should.
    """

    def __init__(
        self,
        dimensions: int,
        *,
        metric: MetricInput = DistanceMetric.COSINE,
        m: int = 32,
        ef_construction: int = 200,
        ef_search: int = 64,
    ) -> None:
        super().__init__(dimensions, metric=metric)
        self._m = m
        self._ef_construction = ef_construction
        self._ef_search = ef_search
        self._labels: dict[str, int] = {}
        self._ids_by_label: dict[int, str] = {}
        self._next_label = 0
        self._deleted_slots = 0
        self._graph = self._new_graph(_MIN_CAPACITY)

    @property
    def ef_search(self) -> int:
        return self._ef_search

    def _new_graph(self, capacity: int) -> Any:
        hnswlib = _load_hnswlib()
        graph = hnswlib.Index(space=_SPACES[self.metric], dim=self.dimensions)
        graph.init_index(
            max_elements=capacity,
            ef_construction=self._ef_construction,
            M=self._m,
            allow_replace_deleted=True,
        )
        graph.set_ef(self._ef_search)
        return graph

    def _ensure_capacity(self) -> None:
        used = len(self._labels) + self._deleted_slots
        capacity = self._graph.get_max_elements()
        if used >= capacity and self._deleted_slots == 0:
            self._graph.resize_index(capacity * 2)
            logger.debug("Resized HNSW graph to %d elements", capacity * 2)

    def upsert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, Any]) -> None:
        row = as_vector(vector, self.dimensions, context=identifier)
        meta = dict(metadata)
        with self._lock.write_locked():
            label = self._labels.get(identifier)
            if label is None:
                self._ensure_capacity()
                label = self._next_label
                self._next_label += 1
                reuse = self._deleted_slots > 0
                self._graph.add_items(
                    row.reshape(1, -1), np.asarray([label]), replace_deleted=reuse
                )
                if reuse:
                    self._deleted_slots -= 1
                self._labels[identifier] = label
                self._ids_by_label[label] = identifier
            else:
                # Re-adding an existing label updates its vector in place.
                self._graph.add_items(row.reshape(1, -1), np.asarray([label]))
            self._table.upsert(identifier, row, meta)

    def remove(self, identifier: str) -> bool:
        with self._lock.write_locked():
            label = self._labels.pop(identifier, None)
            if label is None:
                return False
            del self._ids_by_label[label]
            self._graph.mark_deleted(label)
            self._deleted_slots += 1
            self._table.remove(identifier)
            return True

    def bulk_load(self, entries: Iterable[IndexEntry]) -> int:
        staged = VectorTable(self.dimensions)
        for entry in entries:
            staged.upsert(
                entry.identifier,
                as_vector(entry.vector, self.dimensions, context=entry.identifier),
                dict(entry.metadata),
            )

        count = len(staged)
        graph = self._new_graph(max(_MIN_CAPACITY, count))
        labels = {identifier: position for position, identifier in enumerate(staged.row_ids)}
        if count:
            graph.add_items(staged.matrix, np.arange(count))

        with self._lock.write_locked():
            self._table = staged
            self._graph = graph
            self._labels = labels
            self._ids_by_label = {label: identifier for identifier, label in labels.items()}
            self._next_label = count
            self._deleted_slots = 0
        logger.debug("Built HNSW graph over %d entries", count)
        return count

    def search(
        self,
        query: np.ndarray,
        k: int,
        *,
        filter: MetadataFilter | None = None,
        metric: MetricInput | None = None,
        include_vectors: bool = False,
    ) -> list[SearchHit]:
        if k < 1:
            raise InvalidQuery(f"k must be >= 1; got {k}")
        q = as_vector(query, self.dimensions, context="query")
        active = self.metric if metric is None else normalize_metric(metric)
        predicate = compile_filter(filter)

        with self._lock.read_locked():
            table = self._table
            if active != self.metric:
                return self._search_table(table, q, k, active, predicate, include_vectors)

            if predicate is None:
                matching = len(table)
            else:
                matching = sum(1 for row in range(len(table)) if predicate(table.metadata_at(row)))
            wanted = min(k, matching)
            if wanted == 0:
                return []

            rows = self._graph_candidates(table, q, wanted, predicate)
            if rows is None or len(rows) < wanted:
                logger.debug(
                    "HNSW returned %s of %d candidates; using exact scan",
                    "none" if rows is None else len(rows),
                    wanted,
                )
                return self._search_table(table, q, k, active, predicate, include_vectors)

            candidate_rows = np.asarray(rows, dtype=np.int64)
            scores, distances = score_rows(
                active, table.matrix[candidate_rows], table.norms[candidate_rows], q
            )
            candidate_ids = [table.row_ids[row] for row in rows]
            order = select_top_k(scores, candidate_ids, k)
            return [
                SearchHit(
                    identifier=candidate_ids[i],
                    score=float(scores[i]),
                    distance=float(distances[i]),
                    metadata=dict(table.metadata_at(rows[i])),
                    vector=table.vector_at(rows[i]) if include_vectors else None,
                )
                for i in order
            ]

    def _graph_candidates(
        self, table: VectorTable, query: np.ndarray, wanted: int, predicate
    ) -> list[int] | None:
        label_filter = None
        if predicate is not None:

            def label_filter(label: int) -> bool:
                identifier = self._ids_by_label.get(int(label))
                if identifier is None:
                    return False
                row = table.row_of(identifier)
                return row is not None and predicate(table.metadata_at(row))

        try:
            labels, _ = self._graph.knn_query(query.reshape(1, -1), k=wanted, filter=label_filter)
        except RuntimeError as exc:
            # hnswlib raises when it cannot gather k results.
            logger.debug("HNSW query failed: %s", exc)
            return None

        rows: list[int] = []
        for label in labels[0]:
            identifier = self._ids_by_label.get(int(label))
            if identifier is None:
                continue
            row = table.row_of(identifier)
            if row is not None:
                rows.append(row)
        return rows
