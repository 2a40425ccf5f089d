"""Configuration management with Pydantic and XDG base directory support."""

import os
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, PrivateAttr, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_home() -> Path:
    """Get XDG_DATA_HOME directory, defaulting to ~/.local/share."""
    xdg_data = os.getenv("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


EmbeddingBackend = Literal["openai", "local", "hashing"]
IndexBackend = Literal["exact", "hnsw"]


class Settings(BaseSettings):
    """code-search configuration settings.

    Precedence: CLI flag > environment variable > .env file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODESEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Data directories
    data_dir: Path | None = Field(
        default=None,
        description="Override data directory (defaults to XDG_DATA_HOME/code-search)",
    )

    storage_uri: str | None = Field(
        default=None,
        description=(
            "Vector store location: a directory for the JSONL store, or "
            "'sqlite:///path.db' / '*.db' for SQLite (defaults to <data_dir>/store)"
        ),
    )

    # Embedding model
    embedding_backend: EmbeddingBackend = Field(
        default="hashing",
        description="Embedding provider: openai (HTTP endpoint), local (bundled model), hashing",
    )

    model_endpoint: str | None = Field(
        default=None,
        description="Base URL of an OpenAI-compatible embeddings endpoint",
    )

    model_name: str = Field(
        default="text-embedding-3-small",
        description="Model identifier sent to the embeddings endpoint",
    )

    model_api_key: SecretStr | None = Field(
        default=None,
        description="API key for the embeddings endpoint",
    )

    model_path: Path | None = Field(
        default=None,
        description="Directory of the bundled sentence-transformers model (local backend)",
    )

    embedding_dim: int = Field(
        default=384,
        ge=1,
        description="Embedding dimension D shared by the model, store and index",
    )

    embed_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for a single embedding call (seconds)",
    )

    embed_batch_size: int = Field(
        default=32,
        ge=1,
        description="Documents per embedding batch during bulk ingestion",
    )

    embed_max_workers: int = Field(
        default=4,
        ge=1,
        description="Parallel workers for per-item embedding requests",
    )

    embed_circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive embedding failures before the circuit breaker opens",
    )

    # Search settings
    default_metric: Literal["cosine", "l2", "dot"] = Field(
        default="cosine",
        description="Default distance metric: cosine, l2 (euclidean) or dot",
    )

    max_k: int = Field(
        default=100,
        ge=1,
        description="Upper bound on results per query; larger requests are clamped",
    )

    index_backend: IndexBackend = Field(
        default="exact",
        description="Similarity index: exact (brute force) or hnsw (approximate)",
    )

    hnsw_m: int = Field(default=32, ge=2, description="HNSW graph degree")

    hnsw_ef_construction: int = Field(
        default=200,
        ge=1,
        description="HNSW candidate list size during construction",
    )

    hnsw_ef_search: int = Field(
        default=64,
        ge=1,
        description="HNSW candidate list size during search",
    )

    # Storage settings
    storage_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for acquiring the vector store (seconds)",
    )

    compaction_ratio: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Dead-line fraction of the JSONL log that triggers compaction",
    )

    # Launcher settings (not consumed by the core)
    port: int = Field(default=3003, ge=1, le=65535, description="Listening port")

    _resolved_data_dir: Path | None = PrivateAttr(default=None)
    _data_dir_warning_emitted: bool = PrivateAttr(default=False)

    @field_validator("default_metric", mode="before")
    @classmethod
    def _normalize_metric(cls, value: object) -> object:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return {"euclidean": "l2", "cosine_similarity": "cosine"}.get(lowered, lowered)
        return value

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        if self._resolved_data_dir is not None:
            return self._resolved_data_dir

        if self.data_dir:
            data_dir = self.data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = data_dir
            return data_dir

        primary_dir = get_xdg_data_home() / "code-search"
        try:
            primary_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = primary_dir
            return primary_dir
        except PermissionError as exc:
            fallback = Path.cwd() / ".code-search-data"
            fallback.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = fallback
            if not self._data_dir_warning_emitted:
                print(
                    f"Warning: cannot create data directory at {primary_dir} ({exc}). "
                    f"Using local '{fallback}' instead. Pass --data-dir to override.",
                    file=sys.stderr,
                )
                self._data_dir_warning_emitted = True
            return fallback

    def get_storage_uri(self) -> str:
        """Return the configured store location, defaulting under the data dir."""
        if self.storage_uri:
            return self.storage_uri
        return str(self.get_data_dir() / "store")

    def get_model_api_key(self) -> str | None:
        """Return the plaintext embeddings API key, if configured."""
        if self.model_api_key is None:
            return os.getenv("OPENAI_API_KEY")
        return self.model_api_key.get_secret_value()


# Global settings instance (launcher convenience; the core receives settings explicitly)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
