"""In-process embeddings with sentence-transformers."""

import logging
import threading
import time

from sentence_transformers import SentenceTransformer

from rag_engine.config.providers import LocalProviderConfig
from rag_engine.embeddings.base import EmbeddingProvider, Vector

logger = logging.getLogger(__name__)


class LocalEmbeddingProvider(EmbeddingProvider):
    """Loads the model on first use and keeps it for the provider's lifetime."""

    def __init__(self, config: LocalProviderConfig):
        self.config = config
        self.id = f"local:{config.model_name}"
        self.max_batch_size = config.batch_size
        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()

    @property
    def model(self) -> SentenceTransformer:
        with self._lock:
            if self._model is None:
                t0 = time.monotonic()
                self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
                logger.info("embeddings.local: loaded model %s (%.1fs)", self.config.model_name, time.monotonic() - t0)
            return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def embed(self, texts: list[str], token=None) -> list[Vector]:
        if token is not None:
            token.raise_if_cancelled()
        if not texts:
            return []
        embeddings = self.model.encode(texts, batch_size=self.max_batch_size, show_progress_bar=False)
        return embeddings.tolist()
