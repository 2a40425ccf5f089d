"""Application bootstrap wiring ports, adapters, and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from codesearch.app.adapters import (
    ExactIndex,
    HashingEmbedder,
    HNSWIndex,
    LocalModelEmbedder,
    OpenAIEmbedder,
    open_vector_store,
)
from codesearch.app.index_service import IndexService
from codesearch.app.ports import EmbeddingPort, SimilarityIndexPort, VectorStorePort
from codesearch.app.query_service import QueryService
from codesearch.config import Settings, get_settings
from codesearch.utils.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for one process."""

    settings: Settings
    embedder: EmbeddingPort
    store: VectorStorePort
    index: SimilarityIndexPort
    index_service: IndexService
    query_service: QueryService

    def close(self) -> None:
        self.store.close()
        close_embedder = getattr(self.embedder, "close", None)
        if callable(close_embedder):
            close_embedder()


def create_embedder(settings: Settings) -> EmbeddingPort:
    """Build the embedder selected by ``settings.embedding_backend``."""
    backend = settings.embedding_backend
    if backend == "openai":
        return OpenAIEmbedder(
            model=settings.model_name,
            dimensions=settings.embedding_dim,
            api_key=settings.get_model_api_key(),
            base_url=settings.model_endpoint,
            max_workers=settings.embed_max_workers,
            default_timeout=settings.embed_timeout_seconds,
            breaker=CircuitBreaker(
                failure_threshold=settings.embed_circuit_breaker_threshold,
                timeout_seconds=30.0,
            ),
        )
    if backend == "local":
        if settings.model_path is None:
            raise ValueError(
                "CODESEARCH_MODEL_PATH is required for the local embedding backend."
            )
        return LocalModelEmbedder(
            model_path=settings.model_path,
            dimensions=settings.embedding_dim,
            default_timeout=settings.embed_timeout_seconds,
        )
    return HashingEmbedder(dimensions=settings.embedding_dim)


def create_index(settings: Settings) -> SimilarityIndexPort:
    """Build the similarity index selected by ``settings.index_backend``."""
    if settings.index_backend == "hnsw":
        return HNSWIndex(
            settings.embedding_dim,
            metric=settings.default_metric,
            m=settings.hnsw_m,
            ef_construction=settings.hnsw_ef_construction,
            ef_search=settings.hnsw_ef_search,
        )
    return ExactIndex(settings.embedding_dim, metric=settings.default_metric)


def bootstrap_application(
    settings: Settings | None = None,
    *,
    embedder: EmbeddingPort | None = None,
    recover: bool = True,
) -> ApplicationContainer:
    """Instantiate adapters and services.

    Args:
        settings: Settings to wire from (defaults to the global instance)
        embedder: Embedder override, mainly for tests
        recover: Rebuild the index from the store before returning
    """
    active_settings = settings or get_settings()

    active_embedder = embedder or create_embedder(active_settings)
    store = open_vector_store(
        active_settings.get_storage_uri(),
        dimensions=active_settings.embedding_dim,
        compaction_ratio=active_settings.compaction_ratio,
        default_timeout=active_settings.storage_timeout_seconds,
    )
    try:
        index = create_index(active_settings)
        index_service = IndexService(
            embedder=active_embedder,
            store=store,
            index=index,
            embed_timeout=active_settings.embed_timeout_seconds,
            storage_timeout=active_settings.storage_timeout_seconds,
            batch_size=active_settings.embed_batch_size,
        )
    except Exception:
        store.close()
        raise
    query_service = QueryService(
        embedder=active_embedder,
        index=index,
        max_k=active_settings.max_k,
        default_metric=active_settings.default_metric,
        embed_timeout=active_settings.embed_timeout_seconds,
        is_ready=index_service.is_ready,
    )

    container = ApplicationContainer(
        settings=active_settings,
        embedder=active_embedder,
        store=store,
        index=index,
        index_service=index_service,
        query_service=query_service,
    )
    logger.debug(
        "Bootstrapped %s embedder, %r, %s index",
        active_embedder.model_id,
        store,
        type(index).__name__,
    )

    if recover:
        try:
            index_service.recover()
        except Exception:
            container.close()
            raise
    return container
