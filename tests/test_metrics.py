import numpy as np
import pytest

from codesearch.errors import DimensionMismatch, InvalidQuery
from codesearch.index.metrics import (
    DistanceMetric,
    as_vector,
    normalize_metric,
    score_rows,
    select_top_k,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("cosine", DistanceMetric.COSINE),
        ("L2", DistanceMetric.L2),
        ("euclidean", DistanceMetric.L2),
        ("dot", DistanceMetric.DOT),
        (DistanceMetric.DOT, DistanceMetric.DOT),
    ],
)
def test_normalize_metric(raw, expected):
    assert normalize_metric(raw) is expected


def test_normalize_metric_rejects_unknown():
    with pytest.raises(InvalidQuery):
        normalize_metric("hamming")
    with pytest.raises(InvalidQuery):
        normalize_metric(3)  # type: ignore[arg-type]


def test_as_vector_validates_shape_and_values():
    assert as_vector([1, 2, 3], 3).dtype == np.float32
    with pytest.raises(DimensionMismatch) as excinfo:
        as_vector([1.0, 2.0], 3)
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    with pytest.raises(ValueError):
        as_vector([1.0, float("nan"), 0.0], 3)
    with pytest.raises(ValueError):
        as_vector(np.zeros((2, 3)), 3)


def test_score_rows_per_metric():
    matrix = np.array([[1.0, 0.0], [0.0, 2.0], [0.0, 0.0]], dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1).astype(np.float32)
    query = np.array([1.0, 1.0], dtype=np.float32)

    scores, distances = score_rows(DistanceMetric.COSINE, matrix, norms, query)
    assert scores == pytest.approx([1 / np.sqrt(2), 1 / np.sqrt(2), 0.0])
    assert distances == pytest.approx(1.0 - scores)

    scores, distances = score_rows(DistanceMetric.L2, matrix, norms, query)
    assert distances == pytest.approx([1.0, np.sqrt(2), np.sqrt(2)])
    assert scores == pytest.approx(-distances)

    scores, distances = score_rows(DistanceMetric.DOT, matrix, norms, query)
    assert scores == pytest.approx([1.0, 2.0, 0.0])
    assert distances == pytest.approx([-1.0, -2.0, 0.0])


def test_select_top_k_breaks_ties_by_id():
    scores = np.array([0.5, 0.9, 0.5, 0.5, 0.1])
    ids = ["d", "a", "c", "b", "e"]

    rows = select_top_k(scores, ids, 3)

    assert [ids[r] for r in rows] == ["a", "b", "c"]


def test_select_top_k_respects_candidate_rows():
    scores = np.array([0.9, 0.8, 0.7, 0.6])
    ids = ["a", "b", "c", "d"]

    rows = select_top_k(scores, ids, 5, rows=np.array([1, 3]))

    assert rows == [1, 3]
    assert select_top_k(scores, ids, 0) == []
