"""Densely packed in-memory table of index entries.

Live entries occupy rows ``0..n-1`` of a preallocated float32 matrix. Inserts
append (growing geometrically), replacements overwrite in place and removals
move the last row into the hole, so every mutation is O(D) amortised and
never a rebuild. The table is not synchronised; owners guard it with a
reader-writer lock.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

import numpy as np

_MIN_CAPACITY = 16


class VectorTable:
    """Row storage for ``(id, vector, metadata)`` entries."""

    def __init__(self, dim: int, *, capacity: int = _MIN_CAPACITY) -> None:
        if dim <= 0:
            raise ValueError("dim must be > 0")
        self.dim = dim
        capacity = max(int(capacity), _MIN_CAPACITY)
        self._matrix = np.zeros((capacity, dim), dtype=np.float32)
        self._norms = np.zeros(capacity, dtype=np.float32)
        self._ids: list[str] = []
        self._metadata: list[Mapping[str, Any]] = []
        self._rows: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._rows

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    @property
    def matrix(self) -> np.ndarray:
        """View of the live rows."""
        return self._matrix[: len(self._ids)]

    @property
    def norms(self) -> np.ndarray:
        return self._norms[: len(self._ids)]

    @property
    def row_ids(self) -> list[str]:
        return self._ids

    def row_of(self, identifier: str) -> int | None:
        return self._rows.get(identifier)

    def metadata_at(self, row: int) -> Mapping[str, Any]:
        return self._metadata[row]

    def vector_at(self, row: int) -> np.ndarray:
        return self._matrix[row].copy()

    def upsert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, Any]) -> bool:
        """Insert or replace an entry. Returns True when the id was new."""
        row = self._rows.get(identifier)
        created = row is None
        if row is None:
            row = len(self._ids)
            if row == self._matrix.shape[0]:
                self._grow()
            self._ids.append(identifier)
            self._metadata.append(metadata)
            self._rows[identifier] = row
        else:
            self._metadata[row] = metadata

        self._matrix[row] = vector
        self._norms[row] = float(np.linalg.norm(vector))
        return created

    def remove(self, identifier: str) -> bool:
        """Remove an entry. Returns True when something was removed."""
        row = self._rows.pop(identifier, None)
        if row is None:
            return False

        last = len(self._ids) - 1
        if row != last:
            moved_id = self._ids[last]
            self._matrix[row] = self._matrix[last]
            self._norms[row] = self._norms[last]
            self._ids[row] = moved_id
            self._metadata[row] = self._metadata[last]
            self._rows[moved_id] = row

        self._ids.pop()
        self._metadata.pop()
        self._norms[last] = 0.0
        return True

    def clear(self) -> None:
        self._ids.clear()
        self._metadata.clear()
        self._rows.clear()
        self._norms[:] = 0.0

    def _grow(self) -> None:
        capacity = self._matrix.shape[0] * 2
        matrix = np.zeros((capacity, self.dim), dtype=np.float32)
        norms = np.zeros(capacity, dtype=np.float32)
        live = len(self._ids)
        matrix[:live] = self._matrix[:live]
        norms[:live] = self._norms[:live]
        self._matrix = matrix
        self._norms = norms
