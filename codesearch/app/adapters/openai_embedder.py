"""Embedding adapter for OpenAI-compatible ``/embeddings`` endpoints."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import openai

from codesearch.app.adapters.base_embedder import ParallelEmbedder
from codesearch.errors import EmbeddingUnavailable
from codesearch.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen

logger = logging.getLogger(__name__)


class OpenAIEmbedder(ParallelEmbedder):
    """Embedding adapter backed by any OpenAI-compatible API.

    Works against api.openai.com as well as self-hosted servers exposing the
    same route (LM Studio, vLLM, text-embeddings-inference). Batches go out
    as one request; when that fails the base class retries item by item.
    Repeated failures open a circuit breaker so callers fail fast instead of
    waiting on a dead endpoint.

    Security: the API key is handed to the client and never stored on the
    adapter, so it cannot leak through ``repr()`` or logs.
    """

    def __init__(
        self,
        *,
        model: str,
        dimensions: int,
        api_key: str | None = None,
        base_url: str | None = None,
        max_workers: int = 4,
        default_timeout: float | None = 30.0,
        breaker: CircuitBreaker | None = None,
        client: openai.OpenAI | None = None,
    ) -> None:
        super().__init__(
            dimensions=dimensions, max_workers=max_workers, default_timeout=default_timeout
        )
        self._model = model
        self._base_url = base_url
        self._breaker = breaker or CircuitBreaker(failure_threshold=5, timeout_seconds=30.0)
        if client is None:
            # Self-hosted endpoints usually ignore the key but the client requires one.
            client = openai.OpenAI(
                api_key=api_key or ("unused" if base_url else None),
                base_url=base_url,
                max_retries=0,
            )
        self._client = client

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"model={self._model!r}, base_url={self._base_url!r}, dimensions={self.dimensions})"
        )

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _request(self, inputs: list[str], timeout: float | None) -> list[list[float]]:
        def call() -> list[list[float]]:
            response = self._client.embeddings.create(
                model=self._model, input=inputs, timeout=timeout
            )
            items = sorted(response.data, key=lambda item: item.index)
            return [list(item.embedding) for item in items]

        try:
            # Rejected inputs do not count against the endpoint.
            return self._breaker.call(
                call, is_failure=lambda exc: not isinstance(exc, openai.BadRequestError)
            )
        except CircuitBreakerOpen as exc:
            raise EmbeddingUnavailable(f"Embedding endpoint disabled: {exc}") from exc
        except openai.APITimeoutError as exc:
            raise EmbeddingUnavailable(
                f"Embedding request to {self._model} timed out after {timeout}s"
            ) from exc
        except openai.OpenAIError as exc:
            logger.debug("Embedding request failed: %s", exc)
            raise EmbeddingUnavailable(f"Embedding request to {self._model} failed: {exc}") from exc

    def _embed_raw(self, text: str, *, timeout: float | None) -> list[float]:
        vectors = self._request([text], timeout)
        if len(vectors) != 1:
            raise EmbeddingUnavailable(
                f"Expected 1 embedding from {self._model}, received {len(vectors)}"
            )
        return vectors[0]

    def _embed_batch(self, texts: Sequence[str], *, timeout: float | None) -> list[list[float]]:
        return self._request(list(texts), timeout)
