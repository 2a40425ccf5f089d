"""Document DTO accepted by the index builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Document:
    """A code snippet to be indexed.

    ``version`` is assigned by the index builder; callers leave it unset.
    Conventional metadata keys are ``path``, ``lang``, ``start_line``,
    ``end_line`` and ``repo``.
    """

    id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    version: int | None = None
