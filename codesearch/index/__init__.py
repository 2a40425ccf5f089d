"""Vector kernels shared by the similarity index adapters."""

from codesearch.index.filters import MetadataFilter, compile_filter
from codesearch.index.metrics import (
    DistanceMetric,
    as_vector,
    normalize_metric,
    score_rows,
    select_top_k,
)
from codesearch.index.rerank import deduplicate_with_mmr, filter_overlapping_snippets
from codesearch.index.vector_table import VectorTable

__all__ = [
    "DistanceMetric",
    "MetadataFilter",
    "VectorTable",
    "as_vector",
    "compile_filter",
    "deduplicate_with_mmr",
    "filter_overlapping_snippets",
    "normalize_metric",
    "score_rows",
    "select_top_k",
]
