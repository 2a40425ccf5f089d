"""Corpus discovery for the command line."""

from codesearch.ingest.discover import (
    chunk_lines,
    detect_language,
    discover_source_files,
    iter_source_documents,
    read_document_jsonl,
)

__all__ = [
    "chunk_lines",
    "detect_language",
    "discover_source_files",
    "iter_source_documents",
    "read_document_jsonl",
]
