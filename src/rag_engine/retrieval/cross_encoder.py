"""LLM relevance scoring of (query, chunk) pairs via LangChain ChatAnthropic."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from langchain_anthropic import ChatAnthropic

from rag_engine.config.llm_config import get_llm_model
from rag_engine.retrieval.rerankers import Reranker
from rag_engine.vector_store.base import VectorSearchMatch

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 1000
LLM_TEMPERATURE = 0
LLM_MAX_TOKENS = 10
LLM_TIMEOUT = 30.0

SCORING_PROMPT = """You are a code search relevance scorer. Rate how relevant the following code snippet is to the search query.

Query: "{query}"

Code snippet:
```
{snippet}
```

Respond with ONLY a number between 0.0 and 1.0 representing relevance (0.0 = not relevant, 1.0 = highly relevant)."""


def _get_llm() -> ChatAnthropic:
    """ChatAnthropic with the configured model (ANTHROPIC_LLM_MODEL)."""
    return ChatAnthropic(
        model=get_llm_model(),
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
        timeout=LLM_TIMEOUT,
    )


def build_prompt(query: str, text: str) -> str:
    snippet = text[:MAX_CHUNK_CHARS] + "..." if len(text) > MAX_CHUNK_CHARS else text
    return SCORING_PROMPT.format(query=query, snippet=snippet)


def parse_score(content: Any) -> float:
    """Score in [0, 1] from the model reply. Raises ValueError otherwise."""
    if isinstance(content, list):
        content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
    text = str(content).strip()
    if not text:
        raise ValueError("Empty response from LLM")
    score = float(text.split()[0])
    if score != score or not 0.0 <= score <= 1.0:
        raise ValueError(f"Invalid score format: {text}")
    return score


class CrossEncoderReranker(Reranker):
    """Scores pairs in concurrent batches; a failed pair keeps its original vector score."""

    name = "cross-encoder"

    def __init__(self, llm: Any | None = None, batch_size: int = 10):
        self._llm = llm
        self.batch_size = max(1, batch_size)

    @property
    def llm(self) -> Any:
        if self._llm is None:
            logger.info("retrieval.cross_encoder: using model %s", get_llm_model())
            self._llm = _get_llm()
        return self._llm

    def score(self, query, matches, token=None) -> list[float]:
        t0 = time.monotonic()
        scores: list[float] = []
        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for i in range(0, len(matches), self.batch_size):
                if token is not None:
                    token.raise_if_cancelled()
                batch = matches[i : i + self.batch_size]
                scores.extend(executor.map(lambda m: self._score_pair(query, m), batch))
        logger.info("retrieval.cross_encoder: scored %d pairs (%.1fs)", len(matches), time.monotonic() - t0)
        return scores

    def _score_pair(self, query: str, match: VectorSearchMatch) -> float:
        try:
            response = self.llm.invoke(build_prompt(query, match.chunk.text))
            return parse_score(getattr(response, "content", response))
        except Exception as e:
            logger.warning(
                "retrieval.cross_encoder: scoring %s failed, keeping original score: %s", match.chunk.chunk_id, e
            )
            return match.score
