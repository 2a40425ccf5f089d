"""Pytest configuration and fixtures."""

import gc
import shutil
import tempfile
import threading
from collections.abc import Generator, Sequence
from pathlib import Path

import numpy as np
import pytest

from codesearch.app.adapters.base_embedder import ParallelEmbedder
from codesearch.app.adapters.exact_index import ExactIndex
from codesearch.app.adapters.jsonl_store import JsonlVectorStore
from codesearch.app.index_service import IndexService
from codesearch.app.query_service import QueryService
from codesearch.config import Settings
from codesearch.errors import EmbeddingUnavailable


class TableEmbedder(ParallelEmbedder):
    """Deterministic embedder returning preset vectors for known texts.

    Unknown texts get a vector derived from their hash. Texts listed in
    ``failing`` raise ``EmbeddingUnavailable``; ``calls`` records every text
    the model actually saw.
    """

    def __init__(self, dim: int, table: dict[str, Sequence[float]] | None = None) -> None:
        super().__init__(dimensions=dim, max_workers=2)
        self.table = {text: np.asarray(vec, dtype=np.float32) for text, vec in (table or {}).items()}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._calls_lock = threading.Lock()
        self.model_name = "table-v1"

    @property
    def model_id(self) -> str:
        return self.model_name

    def _embed_raw(self, text: str, *, timeout: float | None) -> np.ndarray:
        with self._calls_lock:
            self.calls.append(text)
        if text in self.failing:
            raise EmbeddingUnavailable(f"model refused {text!r}")
        if text in self.table:
            return self.table[text]
        rng = np.random.default_rng(abs(hash(text)) % (2**32))
        return rng.normal(size=self.dimensions).astype(np.float32)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        # Force garbage collection to release any file handles
        gc.collect()
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated code-search settings scoped to tests."""

    import codesearch.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    data_dir = temp_dir / "appdata"
    data_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(
        data_dir=data_dir,
        embedding_backend="hashing",
        embedding_dim=64,
        storage_uri=None,
    )

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


@pytest.fixture
def embedder() -> TableEmbedder:
    return TableEmbedder(dim=4)


@pytest.fixture
def store(temp_dir: Path) -> Generator[JsonlVectorStore, None, None]:
    vector_store = JsonlVectorStore(temp_dir / "store", dimensions=4)
    try:
        yield vector_store
    finally:
        vector_store.close()


@pytest.fixture
def index_service(embedder: TableEmbedder, store: JsonlVectorStore) -> IndexService:
    service = IndexService(
        embedder=embedder,
        store=store,
        index=ExactIndex(4),
        embed_timeout=5.0,
        storage_timeout=5.0,
        batch_size=3,
    )
    service.recover()
    return service


@pytest.fixture
def query_service(embedder: TableEmbedder, index_service: IndexService) -> QueryService:
    return QueryService(
        embedder=embedder,
        index=index_service.index,
        max_k=5,
        is_ready=index_service.is_ready,
    )
