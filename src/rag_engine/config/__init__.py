"""Configuration for rag-engine."""

from rag_engine.config.llm_config import get_llm_model
from rag_engine.config.providers import (
    ChromaStoreConfig,
    DeterministicProviderConfig,
    EmbeddingProviderConfig,
    LocalProviderConfig,
    LocalStoreConfig,
    OllamaProviderConfig,
    OpenAIProviderConfig,
    RemoteStoreConfig,
    VectorStoreConfig,
    parse_provider_config,
    parse_store_config,
    provider_config_from_settings,
    store_config_from_settings,
)
from rag_engine.config.settings import Settings, get_settings, settings, workspace_root

__all__ = [
    "settings",
    "Settings",
    "get_settings",
    "workspace_root",
    "get_llm_model",
    "EmbeddingProviderConfig",
    "DeterministicProviderConfig",
    "OpenAIProviderConfig",
    "LocalProviderConfig",
    "OllamaProviderConfig",
    "VectorStoreConfig",
    "LocalStoreConfig",
    "ChromaStoreConfig",
    "RemoteStoreConfig",
    "parse_provider_config",
    "parse_store_config",
    "provider_config_from_settings",
    "store_config_from_settings",
]
