"""Chunk type, Chunker interface and the extension/language registry."""

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Iterable, Iterator

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """A span of source text with location metadata. Lines are 1-based, inclusive."""

    text: str
    start_line: int
    end_line: int
    type: str = "line-based"
    name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Chunker:
    """Splits file text into chunks. Subclasses set id, extensions and languages."""

    id: str = "base"
    extensions: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()

    def chunk(self, text: str, path: str) -> list[Chunk]:
        raise NotImplementedError

    def chunk_stream(self, lines: Iterable[str], path: str) -> Iterator[Chunk]:
        """Chunk from a line iterator. Default buffers the whole file."""
        yield from self.chunk("\n".join(lines), path)


def normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


class ChunkerRegistry:
    """Resolves a chunker by file extension first, then language."""

    def __init__(self):
        self._by_extension: dict[str, Chunker] = {}
        self._by_language: dict[str, Chunker] = {}

    def register(self, chunker: Chunker) -> None:
        for ext in chunker.extensions:
            self._by_extension[normalize_extension(ext)] = chunker
        for lang in chunker.languages:
            self._by_language[lang.lower()] = chunker
        logger.debug("chunking.registry: registered %s", chunker.id)

    def find(self, path: str, language: str | None = None) -> Chunker | None:
        """Return the matching chunker or None; the caller falls back to line windows."""
        ext = normalize_extension(PurePosixPath(path).suffix)
        if ext and ext in self._by_extension:
            return self._by_extension[ext]
        if language and language.lower() in self._by_language:
            return self._by_language[language.lower()]
        return None

    def chunkers(self) -> list[Chunker]:
        seen: dict[str, Chunker] = {}
        for c in [*self._by_extension.values(), *self._by_language.values()]:
            seen.setdefault(c.id, c)
        return list(seen.values())
