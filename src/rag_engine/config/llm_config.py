"""LLM model selection for the cross-encoder reranker.

Set ANTHROPIC_LLM_MODEL (e.g. ANTHROPIC_LLM_MODEL=claude-sonnet-4-5) or edit
settings.anthropic_llm_model to switch models.
"""

from rag_engine.config.settings import settings


def get_llm_model() -> str:
    """Model ID for LangChain ChatAnthropic (no provider prefix)."""
    return settings.anthropic_llm_model
