"""Exact brute-force similarity index."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np

from codesearch.app.ports.similarity_index import IndexEntry, SearchHit, SimilarityIndexPort
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
from codesearch.utils.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


class ExactIndex(SimilarityIndexPort):
    """Scores every live entry against the query: O(N·D) per search.

    This is the reference implementation every other index must agree with.
    Searches hold the read lock for their whole duration, so each one sees a
    single consistent snapshot; mutations hold the write lock only for one
    row update.
    """

    def __init__(
        self,
        dimensions: int,
        *,
        metric: MetricInput = DistanceMetric.COSINE,
    ) -> None:
        self._table = VectorTable(dimensions)
        self._metric = normalize_metric(metric)
        self._lock = ReadWriteLock()

    @property
    def dimensions(self) -> int:
        return self._table.dim

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    def upsert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, Any]) -> None:
        row = as_vector(vector, self.dimensions, context=identifier)
        meta = dict(metadata)
        with self._lock.write_locked():
            self._table.upsert(identifier, row, meta)

    def remove(self, identifier: str) -> bool:
        with self._lock.write_locked():
            return self._table.remove(identifier)

    def bulk_load(self, entries: Iterable[IndexEntry]) -> int:
        staged = VectorTable(self.dimensions)
        for entry in entries:
            staged.upsert(
                entry.identifier,
                as_vector(entry.vector, self.dimensions, context=entry.identifier),
                dict(entry.metadata),
            )
        with self._lock.write_locked():
            self._table = staged
        logger.debug("Loaded %d entries into exact index", len(staged))
        return len(staged)

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
        active = self._metric if metric is None else normalize_metric(metric)
        predicate = compile_filter(filter)

        with self._lock.read_locked():
            table = self._table
            return self._search_table(table, q, k, active, predicate, include_vectors)

    def _search_table(
        self,
        table: VectorTable,
        query: np.ndarray,
        k: int,
        metric: DistanceMetric,
        predicate,
        include_vectors: bool,
    ) -> list[SearchHit]:
        if len(table) == 0:
            return []

        rows = None
        if predicate is not None:
            rows = np.fromiter(
                (row for row in range(len(table)) if predicate(table.metadata_at(row))),
                dtype=np.int64,
            )
            if rows.size == 0:
                return []
            scores, distances = score_rows(metric, table.matrix[rows], table.norms[rows], query)
            # Map back to full-table positions for selection.
            full_scores = np.full(len(table), -np.inf)
            full_distances = np.full(len(table), np.inf)
            full_scores[rows] = scores
            full_distances[rows] = distances
            scores, distances = full_scores, full_distances
        else:
            scores, distances = score_rows(metric, table.matrix, table.norms, query)

        best = select_top_k(scores, table.row_ids, k, rows)
        return [
            SearchHit(
                identifier=table.row_ids[row],
                score=float(scores[row]),
                distance=float(distances[row]),
                metadata=dict(table.metadata_at(row)),
                vector=table.vector_at(row) if include_vectors else None,
            )
            for row in best
        ]

    def ids(self) -> list[str]:
        with self._lock.read_locked():
            return list(self._table.row_ids)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._table)

    def __contains__(self, identifier: object) -> bool:
        with self._lock.read_locked():
            return identifier in self._table
