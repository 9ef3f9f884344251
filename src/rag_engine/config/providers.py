"""Tagged provider and store configs, resolved once from Settings."""

import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from rag_engine.config.settings import Settings, workspace_root
from rag_engine.errors import ConfigurationError
from rag_engine.rate_limit.presets import get_preset

logger = logging.getLogger(__name__)


class DeterministicProviderConfig(BaseModel):
    type: Literal["deterministic"] = "deterministic"
    dimension: int = 384


class OpenAIProviderConfig(BaseModel):
    type: Literal["openai"] = "openai"
    api_key: str = Field(..., description="OpenAI API key")
    model: str = "text-embedding-3-small"
    dimension: int | None = None
    base_url: str = "https://api.openai.com/v1"
    batch_size: int = 500
    timeout: float = 30.0
    max_retries: int = 3
    rate_limit_backoff: float = 1.0


class LocalProviderConfig(BaseModel):
    """sentence-transformers model run in-process."""

    type: Literal["local"] = "local"
    model_name: str = "all-MiniLM-L6-v2"
    device: str | None = None
    batch_size: int = 64


class OllamaProviderConfig(BaseModel):
    type: Literal["ollama"] = "ollama"
    url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    dimension: int = 768
    timeout: float = 30.0
    max_retries: int = 3
    rate_limit_backoff: float = 1.0


EmbeddingProviderConfig = Annotated[
    Union[DeterministicProviderConfig, OpenAIProviderConfig, LocalProviderConfig, OllamaProviderConfig],
    Field(discriminator="type"),
]


class LocalStoreConfig(BaseModel):
    type: Literal["local"] = "local"
    path: str | None = None


class ChromaStoreConfig(BaseModel):
    type: Literal["chroma"] = "chroma"
    path: str
    collection: str = "codebase"


class RemoteStoreConfig(BaseModel):
    type: Literal["remote"] = "remote"
    url: str
    api_key: str | None = None
    collection: str = "mind_chunks"
    dimension: int = 1536
    timeout: float = 30.0


VectorStoreConfig = Annotated[
    Union[LocalStoreConfig, ChromaStoreConfig, RemoteStoreConfig],
    Field(discriminator="type"),
]

_provider_adapter = TypeAdapter(EmbeddingProviderConfig)
_store_adapter = TypeAdapter(VectorStoreConfig)


def parse_provider_config(data: dict) -> EmbeddingProviderConfig:
    """Validate a raw dict (e.g. from YAML) into a provider config."""
    return _provider_adapter.validate_python(data)


def parse_store_config(data: dict) -> VectorStoreConfig:
    return _store_adapter.validate_python(data)


def rate_limit_backoff(s: Settings) -> float:
    """Retry delay multiplier for 429s: presets with the backoff strategy double it."""
    return 2.0 if get_preset(s.rag_rate_limit_preset).strategy == "backoff" else 1.0


def provider_config_from_settings(s: Settings) -> EmbeddingProviderConfig:
    """Resolve rag_embedding_provider (including auto) into a concrete config."""
    kind = s.rag_embedding_provider.strip().lower()
    if kind == "auto":
        kind = "openai" if s.openai_api_key else "local"
        logger.info("config: auto embedding provider resolved to %s", kind)
    if kind == "openai":
        if not s.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai embedding provider")
        return OpenAIProviderConfig(
            api_key=s.openai_api_key,
            model=s.openai_embedding_model,
            base_url=s.openai_base_url,
            rate_limit_backoff=rate_limit_backoff(s),
        )
    if kind == "local":
        return LocalProviderConfig(model_name=s.rag_embedding_model)
    if kind == "ollama":
        return OllamaProviderConfig(url=s.ollama_url, model=s.ollama_model, rate_limit_backoff=rate_limit_backoff(s))
    if kind == "deterministic":
        return DeterministicProviderConfig()
    raise ConfigurationError(f"Unknown embedding provider: {s.rag_embedding_provider}")


def store_config_from_settings(s: Settings, dimension: int = 1536) -> VectorStoreConfig:
    kind = s.rag_vector_store.strip().lower()
    root = workspace_root(s)
    if kind == "local":
        return LocalStoreConfig(path=str(root / "index"))
    if kind == "chroma":
        return ChromaStoreConfig(path=str(root / "chroma"))
    if kind == "remote":
        if not s.qdrant_url:
            raise ConfigurationError("QDRANT_URL is required for the remote vector store")
        return RemoteStoreConfig(
            url=s.qdrant_url,
            api_key=s.qdrant_api_key,
            collection=s.qdrant_collection,
            dimension=dimension,
        )
    raise ConfigurationError(f"Unknown vector store: {s.rag_vector_store}")
