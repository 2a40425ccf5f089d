"""Vector store port interface: the durable source of truth."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Protocol

import numpy as np


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class VectorRecord:
    """Persisted embedding of one document version."""

    id: str
    vector: np.ndarray
    metadata: dict[str, Any]
    version: int
    content_hash: str | None = None
    model: str | None = None
    updated_at: str = field(default_factory=utc_now_iso)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vector": [float(value) for value in self.vector],
            "metadata": self.metadata,
            "version": self.version,
            "content_hash": self.content_hash,
            "model": self.model,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> VectorRecord:
        return cls(
            id=str(payload["id"]),
            vector=np.asarray(payload["vector"], dtype=np.float32),
            metadata=dict(payload.get("metadata") or {}),
            version=int(payload["version"]),
            content_hash=payload.get("content_hash"),
            model=payload.get("model"),
            updated_at=payload.get("updated_at") or utc_now_iso(),
        )


class VectorStorePort(Protocol):
    """Port interface for durable ``id -> (vector, metadata, version)`` storage.

    Implementations must:
    - Make every operation atomic per key with respect to concurrent readers
    - Raise ``StorageUnavailable`` on I/O failure or when the store cannot be
      acquired within ``timeout`` seconds; never drop a write silently
    - Raise ``NotFound`` from ``get`` for unknown ids

    Side effects: Writes under the configured storage location.
    """

    def put(self, record: VectorRecord, *, timeout: float | None = None) -> None:
        """Insert or replace the record for ``record.id``."""
        ...

    def get(self, identifier: str, *, timeout: float | None = None) -> VectorRecord:
        ...

    def delete(self, identifier: str, *, timeout: float | None = None) -> bool:
        """Remove a record. Returns whether one existed."""
        ...

    def scan(self, *, timeout: float | None = None) -> Iterator[VectorRecord]:
        """Iterate over a snapshot of every stored record."""
        ...

    def count(self, *, timeout: float | None = None) -> int:
        ...

    def close(self) -> None:
        ...
