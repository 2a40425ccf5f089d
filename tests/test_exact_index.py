"""Exact index behaviour checked against a plain brute-force reference."""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from codesearch.app.adapters.exact_index import ExactIndex
from codesearch.app.ports.similarity_index import IndexEntry
from codesearch.errors import DimensionMismatch, InvalidQuery


def _brute_force(vectors: dict[str, np.ndarray], query: np.ndarray, k: int, metric: str) -> list[str]:
    def score(vec: np.ndarray) -> float:
        if metric == "l2":
            return -float(np.linalg.norm(vec.astype(np.float64) - query))
        if metric == "dot":
            return float(vec.astype(np.float64) @ query)
        denom = float(np.linalg.norm(vec)) * float(np.linalg.norm(query))
        return float(vec.astype(np.float64) @ query) / denom if denom else 0.0

    ranked = sorted(vectors, key=lambda ident: (-score(vectors[ident]), ident))
    return ranked[:k]


@pytest.fixture
def random_corpus() -> dict[str, np.ndarray]:
    rng = np.random.default_rng(7)
    return {f"doc-{i:03d}": rng.normal(size=8).astype(np.float32) for i in range(200)}


@pytest.mark.parametrize("metric", ["cosine", "l2", "dot"])
def test_top_k_matches_brute_force(random_corpus, metric):
    index = ExactIndex(8, metric=metric)
    for ident, vec in random_corpus.items():
        index.upsert(ident, vec, {"n": ident})

    rng = np.random.default_rng(11)
    for _ in range(5):
        query = rng.normal(size=8).astype(np.float32)
        hits = index.search(query, 10)
        assert [hit.identifier for hit in hits] == _brute_force(random_corpus, query, 10, metric)
        scores = [hit.score for hit in hits]
        assert scores == sorted(scores, reverse=True)


def test_euclidean_distance_example():
    index = ExactIndex(2, metric="l2")
    query = np.array([0.0, 0.0], dtype=np.float32)
    index.upsert("far", np.array([0.9, 0.0], dtype=np.float32), {})
    index.upsert("near", np.array([0.1, 0.0], dtype=np.float32), {})
    index.upsert("mid", np.array([0.0, 0.5], dtype=np.float32), {})

    hits = index.search(query, 2)

    assert [hit.identifier for hit in hits] == ["near", "mid"]
    assert [hit.distance for hit in hits] == pytest.approx([0.1, 0.5])


def test_ties_break_by_ascending_id():
    index = ExactIndex(2)
    same = np.array([1.0, 1.0], dtype=np.float32)
    for ident in ["zeta", "alpha", "mid", "beta"]:
        index.upsert(ident, same, {})

    hits = index.search(same, 3)

    assert [hit.identifier for hit in hits] == ["alpha", "beta", "mid"]


def test_filter_applies_before_ranking(random_corpus):
    index = ExactIndex(8)
    for i, (ident, vec) in enumerate(random_corpus.items()):
        index.upsert(ident, vec, {"lang": "rust" if i % 10 == 0 else "python"})

    query = np.ones(8, dtype=np.float32)
    hits = index.search(query, 15, filter={"lang": "rust"})

    # 20 rust entries exist, so all 15 slots are filled with matching entries.
    assert len(hits) == 15
    assert all(hit.metadata["lang"] == "rust" for hit in hits)

    rust_only = {ident: vec for i, (ident, vec) in enumerate(random_corpus.items()) if i % 10 == 0}
    assert [hit.identifier for hit in hits] == _brute_force(rust_only, query, 15, "cosine")


def test_filter_with_fewer_matches_than_k():
    index = ExactIndex(2)
    index.upsert("a", np.array([1.0, 0.0], dtype=np.float32), {"lang": "go"})
    index.upsert("b", np.array([0.0, 1.0], dtype=np.float32), {"lang": "rust"})

    hits = index.search(np.array([1.0, 1.0], dtype=np.float32), 5, filter={"lang": "go"})
    assert [hit.identifier for hit in hits] == ["a"]
    assert index.search(np.array([1.0, 1.0], dtype=np.float32), 5, filter={"lang": "c"}) == []


def test_replace_and_remove():
    index = ExactIndex(2)
    index.upsert("a", np.array([1.0, 0.0], dtype=np.float32), {"v": 1})
    index.upsert("a", np.array([0.0, 1.0], dtype=np.float32), {"v": 2})

    assert len(index) == 1
    hit = index.search(np.array([0.0, 1.0], dtype=np.float32), 1, include_vectors=True)[0]
    assert hit.metadata == {"v": 2}
    assert np.array_equal(hit.vector, np.array([0.0, 1.0], dtype=np.float32))

    assert index.remove("a") is True
    assert index.remove("a") is False
    assert "a" not in index
    assert index.search(np.array([0.0, 1.0], dtype=np.float32), 1) == []


def test_metric_override():
    index = ExactIndex(2, metric="cosine")
    index.upsert("small", np.array([1.0, 0.0], dtype=np.float32), {})
    index.upsert("large", np.array([10.0, 1.0], dtype=np.float32), {})
    query = np.array([1.0, 0.0], dtype=np.float32)

    assert index.search(query, 1)[0].identifier == "small"
    assert index.search(query, 1, metric="dot")[0].identifier == "large"


def test_bulk_load_replaces_contents():
    index = ExactIndex(2)
    index.upsert("old", np.array([1.0, 0.0], dtype=np.float32), {})

    loaded = index.bulk_load(
        IndexEntry(f"n{i}", np.array([i, 1.0], dtype=np.float32), {}) for i in range(3)
    )

    assert loaded == 3
    assert sorted(index.ids()) == ["n0", "n1", "n2"]


def test_invalid_inputs():
    index = ExactIndex(3)
    with pytest.raises(DimensionMismatch):
        index.upsert("a", np.zeros(2, dtype=np.float32), {})
    with pytest.raises(InvalidQuery):
        index.search(np.zeros(3, dtype=np.float32), 0)
    with pytest.raises(DimensionMismatch):
        index.search(np.zeros(4, dtype=np.float32), 1)
    with pytest.raises(InvalidQuery):
        index.search(np.zeros(3, dtype=np.float32), 1, filter="lang=rust")


def test_concurrent_searches_see_whole_entries():
    """Each entry's vector and metadata always change together."""
    index = ExactIndex(4)
    for i in range(50):
        index.upsert(f"id-{i}", np.full(4, float(i), dtype=np.float32), {"value": float(i)})

    done = threading.Event()
    errors: list[str] = []

    def writer() -> None:
        for generation in range(1, 21):
            for i in range(50):
                value = float(i + generation)
                index.upsert(f"id-{i}", np.full(4, value, dtype=np.float32), {"value": value})
            time.sleep(0.001)
        done.set()

    def reader() -> None:
        query = np.ones(4, dtype=np.float32)
        while not done.is_set():
            for hit in index.search(query, 10, include_vectors=True):
                if not np.all(hit.vector == hit.metadata["value"]):
                    errors.append(hit.identifier)

    thread = threading.Thread(target=writer)
    thread.start()
    readers = [threading.Thread(target=reader) for _ in range(3)]
    for r in readers:
        r.start()
    thread.join()
    for r in readers:
        r.join()

    assert errors == []
    assert len(index) == 50
