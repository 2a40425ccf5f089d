"""Similarity index port interface: the in-memory query cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol

import numpy as np

from codesearch.index.filters import MetadataFilter
from codesearch.index.metrics import MetricInput


@dataclass(slots=True)
class SearchHit:
    """Single similarity search result.

    ``score`` grows with similarity and ``distance`` shrinks with it; both are
    expressed in the metric the search ran with.
    """

    identifier: str
    score: float
    distance: float
    metadata: dict[str, Any]
    vector: np.ndarray | None = None


@dataclass(slots=True)
class IndexEntry:
    """Entry handed to ``bulk_load`` during recovery."""

    identifier: str
    vector: np.ndarray
    metadata: dict[str, Any]


class SimilarityIndexPort(Protocol):
    """Port interface for nearest-neighbour search over live entries.

    Implementations must:
    - Hold exactly one entry per identifier
    - Apply filters before ranking
    - Order hits by decreasing score, breaking ties by ascending identifier
    - Give every search a consistent snapshot under concurrent mutation

    Side effects: None (in-memory only).
    """

    @property
    def dimensions(self) -> int:
        ...

    def upsert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, Any]) -> None:
        """Insert or replace the entry for ``identifier``."""
        ...

    def remove(self, identifier: str) -> bool:
        """Remove an entry. Returns whether one existed."""
        ...

    def search(
        self,
        query: np.ndarray,
        k: int,
        *,
        filter: MetadataFilter | None = None,
        metric: MetricInput | None = None,
        include_vectors: bool = False,
    ) -> list[SearchHit]:
        """Return up to ``k`` hits, best first."""
        ...

    def bulk_load(self, entries: Iterable[IndexEntry]) -> int:
        """Replace the whole contents with ``entries``. Returns the entry count."""
        ...

    def ids(self) -> list[str]:
        ...

    def __len__(self) -> int:
        ...

    def __contains__(self, identifier: object) -> bool:
        ...
