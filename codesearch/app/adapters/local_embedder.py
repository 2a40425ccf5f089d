"""On-disk sentence-transformers model embedder."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from codesearch.app.adapters.base_embedder import ParallelEmbedder
from codesearch.errors import DimensionMismatch, EmbeddingUnavailable

logger = logging.getLogger(__name__)


class LocalModelEmbedder(ParallelEmbedder):
    """Embed text with a bundled model directory (e.g. all-MiniLM-L6-v2).

    The model is loaded on first use. Inference runs under a lock because a
    single model instance is not safe to share between threads.
    """

    def __init__(
        self,
        *,
        model_path: Path,
        dimensions: int = 384,
        device: str | None = None,
        normalize: bool = True,
        default_timeout: float | None = None,
    ) -> None:
        super().__init__(dimensions=dimensions, max_workers=1, default_timeout=default_timeout)
        self._model_path = Path(model_path)
        self._device = device
        self._normalize = normalize
        self._model: Any | None = None
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return f"local:{self._model_path.name}"

    def _ensure_model(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:  # pragma: no cover - optional dep
            raise EmbeddingUnavailable(
                "sentence-transformers is required for local embeddings. "
                "Install 'code-search[local]'."
            ) from exc

        if not self._model_path.exists():
            raise EmbeddingUnavailable(f"Embedding model not found: {self._model_path}")

        logger.info("Loading embedding model from %s", self._model_path)
        try:
            model = SentenceTransformer(str(self._model_path), device=self._device)
        except (OSError, ValueError, RuntimeError) as exc:
            raise EmbeddingUnavailable(f"Failed to load model {self._model_path}: {exc}") from exc

        actual = model.get_sentence_embedding_dimension()
        if actual is not None and int(actual) != self.dimensions:
            raise DimensionMismatch(self.dimensions, int(actual), context=self.model_id)
        self._model = model
        return model

    def _encode(self, texts: list[str]) -> np.ndarray:
        with self._lock:
            model = self._ensure_model()
            try:
                return model.encode(
                    texts,
                    convert_to_numpy=True,
                    normalize_embeddings=self._normalize,
                    show_progress_bar=False,
                )
            except (RuntimeError, ValueError) as exc:
                raise EmbeddingUnavailable(f"{self.model_id} failed to encode: {exc}") from exc

    def _embed_raw(self, text: str, *, timeout: float | None) -> np.ndarray:
        return self._encode([text])[0]

    def _embed_batch(self, texts: Sequence[str], *, timeout: float | None) -> list[np.ndarray]:
        return list(self._encode(list(texts)))
