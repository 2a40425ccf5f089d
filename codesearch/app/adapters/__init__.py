"""Adapter implementations for code-search ports."""

from codesearch.app.adapters.base_embedder import ParallelEmbedder
from codesearch.app.adapters.exact_index import ExactIndex
from codesearch.app.adapters.hashing_embedder import HashingEmbedder
from codesearch.app.adapters.hnsw import HNSWIndex
from codesearch.app.adapters.jsonl_store import JsonlVectorStore
from codesearch.app.adapters.local_embedder import LocalModelEmbedder
from codesearch.app.adapters.openai_embedder import OpenAIEmbedder
from codesearch.app.adapters.sqlite_store import SQLiteVectorStore, open_vector_store

__all__ = [
    "ExactIndex",
    "HNSWIndex",
    "HashingEmbedder",
    "JsonlVectorStore",
    "LocalModelEmbedder",
    "OpenAIEmbedder",
    "ParallelEmbedder",
    "SQLiteVectorStore",
    "open_vector_store",
]
