"""Deterministic feature-hashing embedder.

Needs no model weights or network, which makes it the default for tests and
offline use. Identifiers are split on snake_case and camelCase boundaries so
``parse_config`` and ``parseConfig`` land near each other.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator

import numpy as np

from codesearch.app.adapters.base_embedder import ParallelEmbedder

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+|[^\sA-Za-z0-9_]")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    for match in _TOKEN_RE.finditer(text):
        token = match.group(0)
        tokens.append(token.lower())
        if len(token) > 1 and (token[0].isalpha() or token[0] == "_"):
            parts = [part.lower() for chunk in token.split("_") for part in _CAMEL_RE.findall(chunk)]
            if len(parts) > 1:
                tokens.extend(parts)
    return tokens


class HashingEmbedder(ParallelEmbedder):
    """Signed feature hashing of unigrams and bigrams, L2-normalised."""

    def __init__(
        self,
        *,
        dimensions: int = 384,
        max_workers: int = 1,
        default_timeout: float | None = None,
    ) -> None:
        super().__init__(
            dimensions=dimensions, max_workers=max_workers, default_timeout=default_timeout
        )

    @property
    def model_id(self) -> str:
        return f"hashing-v1-{self.dimensions}"

    def _features(self, text: str) -> Iterator[str]:
        tokens = tokenize(text)
        yield from tokens
        for left, right in zip(tokens, tokens[1:]):
            yield f"{left} {right}"

    def _embed_raw(self, text: str, *, timeout: float | None) -> np.ndarray:
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for feature in self._features(text):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = float(np.linalg.norm(vector))
        if norm > 0.0:
            vector /= norm
        return vector

    def _embed_batch(self, texts, *, timeout):
        return [self._embed_raw(text, timeout=timeout) for text in texts]
