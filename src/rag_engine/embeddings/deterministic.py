"""Hash-seeded pseudo-embeddings for tests and offline runs."""

import hashlib
import math

from rag_engine.embeddings.base import EmbeddingProvider, Vector

LCG_A = 1664525
LCG_C = 1013904223
LCG_M = 2**32


def deterministic_vector(text: str, dimension: int) -> Vector:
    """sha256 seeds an LCG; values map to [-1, 1] and the vector is L2-normalised."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:4], "big")
    values: list[float] = []
    state = seed
    for _ in range(dimension):
        state = (LCG_A * state + LCG_C) % LCG_M
        values.append(state / LCG_M * 2 - 1)
    norm = math.sqrt(sum(v * v for v in values))
    return [v / norm for v in values] if norm else values


class DeterministicEmbeddingProvider(EmbeddingProvider):
    id = "deterministic"
    max_batch_size = 1000

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed(self, texts: list[str], token=None) -> list[Vector]:
        return [deterministic_vector(t, self.dimension) for t in texts]
