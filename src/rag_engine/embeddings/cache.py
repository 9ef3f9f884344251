"""Content-addressed LRU cache in front of embedding providers.

One instance is built by the caller and passed through the pipeline context.
reset() clears entries and counters for tests.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float
    enabled: bool


def cache_key(model: str, text: str) -> str:
    return f"{model}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


class EmbeddingCache:
    def __init__(
        self,
        max_size: int = 10_000,
        ttl_seconds: float = 24 * 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._entries: OrderedDict[str, tuple[list[float], float]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, model: str, text: str) -> list[float] | None:
        if not self.enabled:
            return None
        key = cache_key(model, text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._clock() - entry[1] > self.ttl_seconds:
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry[0]

    def set(self, model: str, text: str, vector: list[float]) -> None:
        if not self.enabled:
            return
        key = cache_key(model, text)
        with self._lock:
            self._entries[key] = (vector, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def get_many(self, model: str, texts: list[str]) -> list[list[float] | None]:
        return [self.get(model, t) for t in texts]

    def set_many(self, model: str, texts: list[str], vectors: list[list[float]]) -> None:
        for text, vector in zip(texts, vectors):
            self.set(model, text, vector)

    def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, ts) in self._entries.items() if now - ts > self.ttl_seconds]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("embeddings.cache: removed %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
                enabled=self.enabled,
            )

    def size_bytes(self) -> int:
        """Rough footprint: 8 bytes per float plus the key."""
        with self._lock:
            return sum(len(k) + len(v) * 8 for k, (v, _) in self._entries.items())
