"""Pydantic settings for rag-engine configuration."""

import logging
import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str | None = None
    anthropic_api_key: str = ""

    # Anthropic model used by the cross-encoder reranker. ANTHROPIC_LLM_MODEL env.
    anthropic_llm_model: str = "claude-haiku-4-5"

    # Root for local indexes, registry, checkpoints. Default: .rag_engine in cwd.
    rag_workspace: str = ""

    # auto | openai | local | ollama | deterministic. auto picks openai when a key is set.
    rag_embedding_provider: str = "auto"

    # sentence-transformers model ID for the local provider.
    rag_embedding_model: str = "all-MiniLM-L6-v2"

    openai_embedding_model: str = "text-embedding-3-small"
    openai_base_url: str = "https://api.openai.com/v1"

    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "nomic-embed-text"

    # local | chroma | remote
    rag_vector_store: str = "local"

    # Remote (Qdrant) store. Required when rag_vector_store=remote.
    qdrant_url: str = ""
    qdrant_api_key: str | None = None
    qdrant_collection: str = "mind_chunks"

    rag_memory_limit_mb: int = 4096
    rag_rate_limit_preset: str = "openai-tier-2"

    # none | heuristic | smart-heuristic | cross-encoder
    rag_reranker: str = "smart-heuristic"

    rag_sync_ttl_days: int = 30
    rag_registry_backup_retention: int = 7

    rag_cache_size: int = 10_000
    rag_cache_ttl_hours: float = 24.0

    log_level: str = "INFO"


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


settings = get_settings()


def workspace_root(s: Settings | None = None) -> Path:
    """Directory holding local indexes, the document registry and checkpoints."""
    s = s or settings
    raw = s.rag_workspace.strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path.cwd().resolve() / ".rag_engine"
