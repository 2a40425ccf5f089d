"""code-search - embedding-indexed semantic search over source-code snippets.

The core turns snippets into vectors, persists them in a durable vector store,
keeps an in-memory similarity index derived from that store, and answers
top-K nearest-neighbour queries.
"""

__version__ = "0.1.0"
__author__ = "code-search contributors"

from codesearch.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
