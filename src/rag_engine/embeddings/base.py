"""EmbeddingProvider interface."""

from rag_engine.errors import InvalidInputError

Vector = list[float]


class EmbeddingProvider:
    """embed() is order-preserving and returns one vector per input text."""

    id: str = "base"
    dimension: int = 0
    max_batch_size: int = 100

    def embed(self, texts: list[str], token=None) -> list[Vector]:
        raise NotImplementedError


def sanitize_text(text: str) -> str:
    """Strip NUL bytes and surrounding whitespace. Empty results are invalid input."""
    cleaned = text.replace("\x00", "").strip()
    if not cleaned:
        raise InvalidInputError("Empty text cannot be embedded")
    return cleaned
