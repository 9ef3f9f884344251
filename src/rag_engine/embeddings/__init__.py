"""Embedding providers, the embedding cache and the provider factory."""

from rag_engine.config.providers import (
    DeterministicProviderConfig,
    EmbeddingProviderConfig,
    LocalProviderConfig,
    OllamaProviderConfig,
    OpenAIProviderConfig,
)
from rag_engine.embeddings.base import EmbeddingProvider, Vector, sanitize_text
from rag_engine.embeddings.cache import CacheStats, EmbeddingCache
from rag_engine.embeddings.deterministic import DeterministicEmbeddingProvider
from rag_engine.embeddings.remote import OllamaEmbeddingProvider, OpenAIEmbeddingProvider
from rag_engine.errors import ConfigurationError
from rag_engine.runtime import Fetch

__all__ = [
    "CacheStats",
    "DeterministicEmbeddingProvider",
    "EmbeddingCache",
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "Vector",
    "create_embedding_provider",
    "sanitize_text",
]


def __getattr__(name: str):
    """Lazy import for sentence-transformers."""
    if name == "LocalEmbeddingProvider":
        from rag_engine.embeddings.local import LocalEmbeddingProvider
        return LocalEmbeddingProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def create_embedding_provider(config: EmbeddingProviderConfig, fetch: Fetch | None = None) -> EmbeddingProvider:
    """Resolve a tagged provider config into a concrete provider."""
    if isinstance(config, DeterministicProviderConfig):
        return DeterministicEmbeddingProvider(config.dimension)
    if isinstance(config, OpenAIProviderConfig):
        if fetch is None:
            raise ConfigurationError("OpenAI provider needs a runtime fetch")
        return OpenAIEmbeddingProvider(config, fetch)
    if isinstance(config, OllamaProviderConfig):
        if fetch is None:
            raise ConfigurationError("Ollama provider needs a runtime fetch")
        return OllamaEmbeddingProvider(config, fetch)
    if isinstance(config, LocalProviderConfig):
        from rag_engine.embeddings.local import LocalEmbeddingProvider
        return LocalEmbeddingProvider(config)
    raise ConfigurationError(f"Unsupported embedding provider config: {config!r}")
