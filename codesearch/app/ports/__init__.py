"""Port interfaces for the code-search application layer.

These protocol interfaces define contracts for adapters.
Services depend on these ports, never on concrete implementations.
"""

__all__ = [
    "Document",
    "EmbeddingOutcome",
    "EmbeddingPort",
    "IndexEntry",
    "SearchHit",
    "SimilarityIndexPort",
    "VectorRecord",
    "VectorStorePort",
]

from codesearch.app.ports.document import Document
from codesearch.app.ports.embedding import EmbeddingOutcome, EmbeddingPort
from codesearch.app.ports.similarity_index import IndexEntry, SearchHit, SimilarityIndexPort
from codesearch.app.ports.vector_store import VectorRecord, VectorStorePort
