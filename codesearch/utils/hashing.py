"""Hashing utilities for deterministic content hashing."""

import hashlib


def compute_sha256(content: bytes) -> str:
    """Compute SHA-256 hash of content.

    Args:
        content: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(content).hexdigest()


def compute_text_digest(text: str) -> str:
    """Return the SHA-256 digest of ``text`` encoded as UTF-8.

    Used to decide whether a re-ingested document changed and needs a new
    embedding.
    """
    return compute_sha256(text.encode("utf-8"))
