"""Configuration management for the vault RAG engine using Hydra.

All configuration is loaded from YAML files in conf/vault_rag/.
This module provides typed config objects and validation.
"""

from collections.abc import Callable
from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, ConfigDict, Field, model_validator

from vault_rag.chunking import ChunkingConfig
from vault_rag.embedding import EmbeddingConfig


class RetrievalSettings(BaseModel):
    """Per-call retrieval settings.

    A snapshot is taken at the start of each retrieval, so updated settings
    apply to the next call without rebuilding the retriever.

    Attributes:
        similarity_threshold: Minimum similarity for a result to be kept
        max_k: Candidates fetched from the vector store per query
        display_k: Results returned to the caller
        query_rewriting_enabled: Rewrite the query with the LLM first
        multi_query_enabled: Search with alternative phrasings as well
        reranking_enabled: Rerank candidates before filtering
        filters: Exact-match metadata filters for the vector search
    """

    model_config = ConfigDict(frozen=True)

    similarity_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    max_k: int = Field(default=10, ge=1, le=200)
    display_k: int = Field(default=5, ge=1, le=200)
    query_rewriting_enabled: bool = False
    multi_query_enabled: bool = False
    reranking_enabled: bool = False
    filters: dict[str, str] | None = None

    @model_validator(mode="after")
    def check_display_k(self) -> "RetrievalSettings":
        if self.display_k > self.max_k:
            raise ValueError(f"display_k ({self.display_k}) must not exceed max_k ({self.max_k})")
        return self


SettingsProvider = Callable[[], RetrievalSettings]


class VaultConfig(BaseModel):
    """Vault location and indexing behaviour.

    Attributes:
        path: Root folder of markdown notes
        max_concurrent_files: Files indexed concurrently
    """

    path: str | None = None
    max_concurrent_files: int = Field(default=5, ge=1, le=64)


class ChunkingSettings(BaseModel):
    """YAML-facing mirror of ChunkingConfig."""

    target_tokens: int = 350
    min_tokens: int = 200
    max_tokens: int = 400
    overlap_tokens: int = 50
    chars_per_token: int = 4

    def to_config(self) -> ChunkingConfig:
        return ChunkingConfig(**self.model_dump())


class VectorStoreConfig(BaseModel):
    """Vector store configuration.

    Attributes:
        backend: Store backend (only "chroma" is implemented)
        base_url: Server URL
        collection_name: Collection holding note chunks
        tenant: Chroma tenant
        database: Chroma database
        timeout_seconds: Request timeout
    """

    backend: str = Field(default="chroma", pattern="^chroma$")
    base_url: str = "http://localhost:8000"
    collection_name: str = "note_chunks"
    tenant: str = "default"
    database: str = "defaultDB"
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)


class GenerationConfig(BaseModel):
    """Language model used for answers, query rewriting and fallback reranking.

    Attributes:
        base_url: Ollama server URL
        model: Generation model
        reranker_model: Dedicated reranker model (None uses the generator)
        timeout_seconds: Request timeout
    """

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1:8b"
    reranker_model: str | None = None
    timeout_seconds: float = Field(default=120.0, ge=1.0, le=600.0)


class MetadataConfig(BaseModel):
    """Where vault indexing records are kept."""

    directory: str = "data/vault_metadata"


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")
    file: str | None = None


class RagConfig(BaseModel):
    """Top-level configuration for the vault RAG engine."""

    vault: VaultConfig = Field(default_factory=VaultConfig)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_chunking(self) -> "RagConfig":
        # fail fast on invalid chunk sizes instead of at first indexing run
        self.chunking.to_config()
        return self


def default_config_dir() -> Path:
    """conf/vault_rag/ relative to the repo root."""
    return Path(__file__).parent.parent.parent / "conf" / "vault_rag"


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> RagConfig:
    """Load configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/vault_rag/)
        overrides: List of config overrides (e.g., ["retrieval.max_k=20"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default", overrides=["vault.path=/notes"])
        >>> config.vault.path
        '/notes'
    """
    config_path = Path(config_path or default_config_dir()).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(config_dir=str(config_path), version_base=None, job_name="vault_rag"):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return RagConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> import yaml
        >>> config = create_default_config()
        >>> with open("conf/vault_rag/default.yaml", "w") as f:
        ...     yaml.dump(config, f)
    """
    return {
        "vault": {"path": "${oc.env:VAULT_RAG_VAULT,null}", "max_concurrent_files": 5},
        "chunking": {
            "target_tokens": 350,
            "min_tokens": 200,
            "max_tokens": 400,
            "overlap_tokens": 50,
            "chars_per_token": 4,
        },
        "embedding": {
            "provider": "ollama",
            "model": "nomic-embed-text:v1.5",
            "base_url": "${oc.env:OLLAMA_BASE_URL,'http://localhost:11434'}",
            "api_path": "/api/embed",
            "dimensions": None,
            "batch_size": 32,
            "max_retries": 3,
            "retry_base_delay": 0.5,
            "timeout_seconds": 30.0,
            "max_tokens": 500,
            "max_chars": 2000,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
        },
        "vector_store": {
            "backend": "chroma",
            "base_url": "${oc.env:CHROMA_BASE_URL,'http://localhost:8000'}",
            "collection_name": "note_chunks",
            "tenant": "default",
            "database": "defaultDB",
            "timeout_seconds": 30.0,
        },
        "retrieval": {
            "similarity_threshold": 0.25,
            "max_k": 10,
            "display_k": 5,
            "query_rewriting_enabled": False,
            "multi_query_enabled": False,
            "reranking_enabled": False,
            "filters": None,
        },
        "generation": {
            "base_url": "${oc.env:OLLAMA_BASE_URL,'http://localhost:11434'}",
            "model": "llama3.1:8b",
            "reranker_model": None,
            "timeout_seconds": 120.0,
        },
        "metadata": {"directory": "data/vault_metadata"},
        "logging": {"level": "INFO", "file": None},
    }
