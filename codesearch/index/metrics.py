"""Distance metrics and vector scoring kernels."""

from __future__ import annotations

import heapq
from collections.abc import Sequence
from enum import Enum

import numpy as np

from codesearch.errors import DimensionMismatch, InvalidQuery


class DistanceMetric(str, Enum):
    """Supported similarity metrics."""

    COSINE = "cosine"
    L2 = "l2"
    DOT = "dot"


MetricInput = str | DistanceMetric

_ALIASES = {
    "euclidean": DistanceMetric.L2,
    "cosine_similarity": DistanceMetric.COSINE,
    "inner_product": DistanceMetric.DOT,
    "ip": DistanceMetric.DOT,
}


def normalize_metric(metric: MetricInput) -> DistanceMetric:
    """Normalize user metric input into a ``DistanceMetric`` value."""
    if isinstance(metric, DistanceMetric):
        return metric
    if isinstance(metric, str):
        key = metric.strip().lower()
        if key in DistanceMetric._value2member_map_:
            return DistanceMetric(key)
        if key in _ALIASES:
            return _ALIASES[key]
        allowed = sorted(set(DistanceMetric._value2member_map_) | set(_ALIASES))
        raise InvalidQuery(f"Unsupported metric: {metric}. Supported: {allowed}")
    raise InvalidQuery(f"Unsupported metric type: {type(metric).__name__}")


def as_vector(values: Sequence[float] | np.ndarray, dim: int, *, context: str | None = None) -> np.ndarray:
    """Return ``values`` as a contiguous float32 vector of length ``dim``.

    Raises:
        DimensionMismatch: If the length differs from ``dim``
        ValueError: If the input is not one-dimensional or holds non-finite values
    """
    array = np.asarray(values, dtype=np.float32)
    if array.ndim == 2 and array.shape[0] == 1:
        array = array.reshape(-1)
    if array.ndim != 1:
        raise ValueError(f"Expected a one-dimensional vector; received shape {array.shape}")
    if array.shape[0] != dim:
        raise DimensionMismatch(dim, int(array.shape[0]), context=context)
    if not np.all(np.isfinite(array)):
        raise ValueError("Vector contains non-finite values")
    return np.ascontiguousarray(array)


def score_rows(
    metric: DistanceMetric,
    matrix: np.ndarray,
    norms: np.ndarray,
    query: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Score every row of ``matrix`` against ``query``.

    Returns:
        ``(scores, distances)`` where a higher score is more similar and a
        lower distance is closer. Cosine distance is ``1 - cosine``; dot
        distance is the negated inner product.
    """
    if matrix.shape[0] == 0:
        empty = np.empty(0, dtype=np.float64)
        return empty, empty

    rows = matrix.astype(np.float64, copy=False)
    q = query.astype(np.float64, copy=False)

    if metric == DistanceMetric.L2:
        distances = np.linalg.norm(rows - q, axis=1)
        return -distances, distances

    dots = rows @ q
    if metric == DistanceMetric.DOT:
        return dots, -dots

    q_norm = float(np.linalg.norm(q))
    denom = norms.astype(np.float64, copy=False) * q_norm
    sims = np.zeros_like(dots)
    np.divide(dots, denom, out=sims, where=denom > 0.0)
    return sims, 1.0 - sims


def select_top_k(
    scores: np.ndarray,
    row_ids: Sequence[str],
    k: int,
    rows: np.ndarray | None = None,
) -> list[int]:
    """Return the rows holding the ``k`` best scores, best first.

    Equal scores break by ascending identifier. ``rows`` restricts selection
    to a candidate subset (e.g. entries that passed a filter).
    """
    candidates = np.arange(scores.shape[0]) if rows is None else np.asarray(rows, dtype=np.int64)
    if k <= 0 or candidates.size == 0:
        return []

    cand_scores = scores[candidates]
    if candidates.size > k:
        # Keep everything tied with the k-th best so id tie-breaking stays exact.
        kth = np.partition(cand_scores, candidates.size - k)[candidates.size - k]
        keep = cand_scores >= kth
        candidates = candidates[keep]
        cand_scores = cand_scores[keep]

    best = heapq.nsmallest(
        k,
        zip((-float(s) for s in cand_scores), (row_ids[int(r)] for r in candidates), candidates.tolist()),
    )
    return [int(row) for _, _, row in best]
