"""Query engine: embeds query text, searches the index and shapes results."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
from pydantic import BaseModel, Field

from codesearch.app.ports.embedding import EmbeddingPort
from codesearch.app.ports.similarity_index import SearchHit, SimilarityIndexPort
from codesearch.errors import EmbeddingUnavailable, IndexNotReady, InvalidQuery, QueryFailed
from codesearch.index.filters import MetadataFilter
from codesearch.index.metrics import MetricInput, as_vector, normalize_metric
from codesearch.index.rerank import (
    DEFAULT_LAMBDA,
    deduplicate_with_mmr,
    filter_overlapping_snippets,
)

logger = logging.getLogger(__name__)

DEFAULT_OVERSAMPLE = 4


class SearchResult(BaseModel):
    """One ranked hit."""

    id: str
    score: float
    distance: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    """Ranked results plus the k actually used."""

    results: list[SearchResult]
    requested_k: int
    effective_k: int
    clamped: bool
    metric: str
    diversified: bool = False
    elapsed_ms: float = 0.0


class QueryService:
    """Read-only query path over a similarity index.

    Queries hold no service-level lock and never mutate anything, so a caller
    may abandon one at any point.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingPort,
        index: SimilarityIndexPort,
        max_k: int = 100,
        default_metric: MetricInput = "cosine",
        embed_timeout: float | None = None,
        is_ready: Callable[[], bool] | None = None,
        oversample: int = DEFAULT_OVERSAMPLE,
        mmr_lambda: float = DEFAULT_LAMBDA,
    ) -> None:
        if max_k < 1:
            raise ValueError("max_k must be >= 1")
        self.embedder = embedder
        self.index = index
        self.max_k = max_k
        self.default_metric = normalize_metric(default_metric)
        self._embed_timeout = embed_timeout
        self._is_ready = is_ready or (lambda: True)
        self._oversample = max(1, oversample)
        self._mmr_lambda = mmr_lambda

    def query(
        self,
        text_or_vector: str | Sequence[float] | np.ndarray,
        k: int = 10,
        *,
        filter: MetadataFilter | None = None,
        metric: MetricInput | None = None,
        diversify: bool = False,
    ) -> QueryResponse:
        """Return up to ``k`` results for raw text or a precomputed vector.

        Raises:
            InvalidQuery: If ``k`` < 1, the text is empty, or the filter or
                metric is malformed
            QueryFailed: If the query text cannot be embedded
            IndexNotReady: If the startup rebuild has not finished
            DimensionMismatch: If a supplied vector has the wrong length
        """
        started = time.perf_counter()
        if isinstance(k, bool) or not isinstance(k, int):
            raise InvalidQuery(f"k must be an integer; got {k!r}")
        if k < 1:
            raise InvalidQuery(f"k must be >= 1; got {k}")
        effective_k = min(k, self.max_k)
        if effective_k < k:
            logger.debug("Clamping k from %d to %d", k, effective_k)

        active_metric = self.default_metric if metric is None else normalize_metric(metric)

        if not self._is_ready():
            raise IndexNotReady("Similarity index is still rebuilding from the vector store")

        vector = self._resolve_vector(text_or_vector)

        fetch_k = effective_k * self._oversample if diversify else effective_k
        hits = self.index.search(
            vector,
            fetch_k,
            filter=filter,
            metric=active_metric,
            include_vectors=diversify,
        )
        if diversify:
            hits = self._diversify(vector, hits, effective_k)

        return QueryResponse(
            results=[
                SearchResult(
                    id=hit.identifier,
                    score=hit.score,
                    distance=hit.distance,
                    metadata=hit.metadata,
                )
                for hit in hits[:effective_k]
            ],
            requested_k=k,
            effective_k=effective_k,
            clamped=effective_k < k,
            metric=active_metric.value,
            diversified=diversify,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _resolve_vector(self, text_or_vector: str | Sequence[float] | np.ndarray) -> np.ndarray:
        if isinstance(text_or_vector, str):
            if not text_or_vector.strip():
                raise InvalidQuery("Query text must be non-empty")
            try:
                return self.embedder.embed(text_or_vector, timeout=self._embed_timeout)
            except EmbeddingUnavailable as exc:
                raise QueryFailed(exc) from exc
        try:
            return as_vector(text_or_vector, self.index.dimensions, context="query")
        except (TypeError, ValueError) as exc:
            raise InvalidQuery(f"Malformed query vector: {exc}") from exc

    def _diversify(self, query: np.ndarray, hits: list[SearchHit], k: int) -> list[SearchHit]:
        candidates = filter_overlapping_snippets(hits)
        keep = deduplicate_with_mmr(
            query,
            [hit.vector for hit in candidates],
            [str(hit.metadata.get("lang", "")) for hit in candidates],
            [str(hit.metadata.get("path", "")) for hit in candidates],
            lambda_=self._mmr_lambda,
            k=k,
        )
        selected = [candidates[i] for i in keep]
        selected.sort(key=lambda hit: (-hit.score, hit.identifier))
        return selected
