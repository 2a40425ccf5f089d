"""Utility modules for common operations."""

from codesearch.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from codesearch.utils.hashing import compute_sha256, compute_text_digest
from codesearch.utils.jsonl import append_jsonl, atomic_write_jsonl, read_jsonl
from codesearch.utils.rwlock import ReadWriteLock

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "ReadWriteLock",
    "append_jsonl",
    "atomic_write_jsonl",
    "compute_sha256",
    "compute_text_digest",
    "read_jsonl",
]
