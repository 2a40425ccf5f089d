"""Shared batching, validation and timeout handling for embedding adapters."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

import numpy as np

from codesearch.app.ports.embedding import EmbeddingOutcome, EmbeddingPort
from codesearch.errors import DimensionMismatch, EmbeddingUnavailable
from codesearch.index.metrics import as_vector

logger = logging.getLogger(__name__)


class ParallelEmbedder(EmbeddingPort, ABC):
    """Base class for embedders.

    Subclasses implement ``_embed_raw`` for one text and may override
    ``_embed_batch`` when the backend accepts several inputs per call. The
    base class validates every vector, applies timeouts and, when a batch
    call fails, retries item by item on a thread pool so each input gets its
    own outcome.
    """

    def __init__(
        self,
        *,
        dimensions: int,
        max_workers: int = 4,
        default_timeout: float | None = None,
    ) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._dim = int(dimensions)
        self._max_workers = max_workers
        self._default_timeout = default_timeout
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @property
    def dimensions(self) -> int:
        return self._dim

    @abstractmethod
    def _embed_raw(self, text: str, *, timeout: float | None) -> Sequence[float] | np.ndarray:
        """Embed one text, raising ``EmbeddingUnavailable`` on backend failure."""

    def _embed_batch(
        self, texts: Sequence[str], *, timeout: float | None
    ) -> list[Sequence[float] | np.ndarray] | None:
        """Embed several texts in one backend call; ``None`` means unsupported."""
        return None

    def embed(self, text: str, *, timeout: float | None = None) -> np.ndarray:
        timeout = self._resolve_timeout(timeout)
        if timeout is None:
            return self._embed_checked(text, timeout)

        future = self._pool().submit(self._embed_checked, text, timeout)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            future.cancel()
            raise EmbeddingUnavailable(
                f"{self.model_id} did not answer within {timeout:.2f}s"
            ) from exc

    def embed_many(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[EmbeddingOutcome]:
        items = list(texts)
        if not items:
            return []
        timeout = self._resolve_timeout(timeout)

        try:
            batch = self._embed_batch(items, timeout=timeout)
        except (DimensionMismatch, EmbeddingUnavailable) as exc:
            logger.warning(
                "Batch embedding of %d texts failed (%s); retrying per item", len(items), exc
            )
            batch = None

        if batch is not None:
            if len(batch) == len(items):
                return [self._outcome(raw) for raw in batch]
            logger.warning(
                "Batch embedding returned %d vectors for %d texts; retrying per item",
                len(batch),
                len(items),
            )

        return self._embed_each(items, timeout)

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def _embed_each(self, texts: list[str], timeout: float | None) -> list[EmbeddingOutcome]:
        pool = self._pool()
        futures: list[Future[np.ndarray]] = [
            pool.submit(self._embed_checked, text, timeout) for text in texts
        ]
        deadline = None if timeout is None else time.monotonic() + timeout

        outcomes: list[EmbeddingOutcome] = []
        for position, future in enumerate(futures):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                outcomes.append(EmbeddingOutcome(vector=future.result(timeout=remaining)))
            except FuturesTimeout:
                future.cancel()
                outcomes.append(
                    EmbeddingOutcome(
                        error=EmbeddingUnavailable(
                            f"{self.model_id} timed out embedding item {position}"
                        )
                    )
                )
            except EmbeddingUnavailable as exc:
                outcomes.append(EmbeddingOutcome(error=exc))
        return outcomes

    def _embed_checked(self, text: str, timeout: float | None) -> np.ndarray:
        try:
            raw = self._embed_raw(text, timeout=timeout)
        except DimensionMismatch as exc:
            raise EmbeddingUnavailable(f"{self.model_id} cannot embed: {exc}") from exc
        return self._coerce(raw)

    def _outcome(self, raw: Sequence[float] | np.ndarray) -> EmbeddingOutcome:
        try:
            return EmbeddingOutcome(vector=self._coerce(raw))
        except EmbeddingUnavailable as exc:
            return EmbeddingOutcome(error=exc)

    def _coerce(self, raw: Sequence[float] | np.ndarray) -> np.ndarray:
        """Validate model output; anything malformed is the model's failure."""
        try:
            return as_vector(raw, self._dim, context=self.model_id)
        except DimensionMismatch as exc:
            raise EmbeddingUnavailable(f"Malformed embedding from {self.model_id}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(f"Malformed embedding from {self.model_id}: {exc}") from exc

    def _resolve_timeout(self, timeout: float | None) -> float | None:
        if timeout is None:
            return self._default_timeout
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        return timeout

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="embed"
                )
            return self._executor
