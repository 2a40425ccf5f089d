"""Embedding port interface.

Defines a protocol for text embedding providers and a small DTO carrying the
per-item outcome of a batch call. The model itself is an external black box
mapping text to a fixed-length vector; adapters wrap a remote endpoint, an
on-disk model or a deterministic hashing scheme.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from codesearch.errors import EmbeddingUnavailable


@dataclass(slots=True)
class EmbeddingOutcome:
    """Result of embedding one item of a batch: a vector or the failure."""

    vector: np.ndarray | None = None
    error: EmbeddingUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.vector is not None

    def unwrap(self) -> np.ndarray:
        """Return the vector or raise the recorded error."""
        if self.error is not None:
            raise self.error
        if self.vector is None:
            raise EmbeddingUnavailable("Embedding outcome holds neither a vector nor an error")
        return self.vector


class EmbeddingPort(Protocol):
    """Port interface for text embedding services.

    Implementations must:
    - Return float32 vectors of exactly ``dimensions`` finite values
    - Be deterministic for a fixed ``model_id``
    - Preserve input order in ``embed_many``
    - Raise ``EmbeddingUnavailable`` for unreachable models, malformed
      output and timeouts

    Side effects: May perform network calls or load model weights.
    """

    @property
    def model_id(self) -> str:
        """Stable identifier of the model producing the vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Length of every vector this embedder returns."""
        ...

    def embed(self, text: str, *, timeout: float | None = None) -> np.ndarray:
        """Embed a single text."""
        ...

    def embed_many(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[EmbeddingOutcome]:
        """Embed texts, returning one outcome per input in input order."""
        ...
