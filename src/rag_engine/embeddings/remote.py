"""HTTP embedding providers: OpenAI embeddings API and Ollama."""

import logging
import time

from rag_engine.config.providers import OllamaProviderConfig, OpenAIProviderConfig
from rag_engine.embeddings.base import EmbeddingProvider, Vector
from rag_engine.errors import ConfigurationError, retry_call
from rag_engine.runtime import Fetch, request_json

logger = logging.getLogger(__name__)

OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """POST {base_url}/embeddings in batches; 429 honours Retry-After, other 4xx fail fast."""

    def __init__(self, config: OpenAIProviderConfig, fetch: Fetch):
        if not config.api_key:
            raise ConfigurationError("OpenAI API key is required")
        self.config = config
        self._fetch = fetch
        self.id = f"openai:{config.model}"
        self.dimension = config.dimension or OPENAI_DIMENSIONS.get(config.model, 1536)
        self.max_batch_size = config.batch_size

    def _request(self, batch: list[str], token) -> list[Vector]:
        payload: dict = {"model": self.config.model, "input": batch}
        if self.config.model.startswith("text-embedding-3"):
            payload["dimensions"] = self.dimension
        timeout = token.timeout_for(self.config.timeout) if token is not None else self.config.timeout
        data = request_json(
            self._fetch,
            "POST",
            f"{self.config.base_url.rstrip('/')}/embeddings",
            json=payload,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            timeout=timeout,
        )
        items = sorted(data["data"], key=lambda d: d["index"])
        return [item["embedding"] for item in items]

    def embed(self, texts: list[str], token=None) -> list[Vector]:
        out: list[Vector] = []
        t0 = time.monotonic()
        for i in range(0, len(texts), self.max_batch_size):
            batch = texts[i : i + self.max_batch_size]
            out.extend(
                retry_call(
                    lambda b=batch: self._request(b, token),
                    max_retries=self.config.max_retries,
                    base_delay=1.0,
                    token=token,
                    rate_limit_multiplier=self.config.rate_limit_backoff,
                    label="openai.embeddings",
                )
            )
        logger.debug("embeddings.openai: %d texts (%.1fs)", len(texts), time.monotonic() - t0)
        return out


class OllamaEmbeddingProvider(EmbeddingProvider):
    """One text per request against a local Ollama server."""

    max_batch_size = 100

    def __init__(self, config: OllamaProviderConfig, fetch: Fetch):
        if not config.url:
            raise ConfigurationError("Ollama URL is required")
        self.config = config
        self._fetch = fetch
        self.id = f"ollama:{config.model}"
        self.dimension = config.dimension

    def embed(self, texts: list[str], token=None) -> list[Vector]:
        url = f"{self.config.url.rstrip('/')}/api/embeddings"
        out: list[Vector] = []
        for text in texts:
            if token is not None:
                token.raise_if_cancelled()
            data = retry_call(
                lambda t=text: request_json(
                    self._fetch,
                    "POST",
                    url,
                    json={"model": self.config.model, "prompt": t},
                    timeout=self.config.timeout,
                ),
                max_retries=self.config.max_retries,
                token=token,
                rate_limit_multiplier=self.config.rate_limit_backoff,
                label="ollama.embeddings",
            )
            out.append(data["embedding"])
        return out
