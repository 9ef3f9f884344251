"""Line-window chunkers used as the fallback for unregistered file types."""

from typing import Iterable, Iterator

from rag_engine.chunking.base import Chunk, Chunker


class LineBasedChunker(Chunker):
    """Overlapping windows of max_lines; windows shorter than min_lines are dropped.

    The first window is always kept so a short file still yields one chunk.
    """

    id = "line-based"

    def __init__(self, max_lines: int = 120, min_lines: int = 40, overlap: int = 20):
        if max_lines < 1:
            raise ValueError("max_lines must be >= 1")
        self.max_lines = max_lines
        self.min_lines = min_lines
        self.overlap = max(0, min(overlap, max_lines - 1))

    def _make(self, lines: list[str], start_line: int, method: str) -> Chunk:
        return Chunk(
            text="\n".join(lines),
            start_line=start_line,
            end_line=start_line + len(lines) - 1,
            type="line-based",
            metadata={
                "chunk_method": method,
                "overlap": self.overlap if start_line > 1 else 0,
            },
        )

    def chunk(self, text: str, path: str) -> list[Chunk]:
        lines = text.splitlines()
        chunks: list[Chunk] = []
        start = 0
        while start < len(lines):
            end = min(len(lines), start + self.max_lines)
            window = lines[start:end]
            if "".join(window).strip() and (not chunks or len(window) >= self.min_lines):
                chunks.append(self._make(window, start + 1, "line-based"))
            if end == len(lines):
                break
            start = end - self.overlap
        return chunks

    def chunk_stream(self, lines: Iterable[str], path: str) -> Iterator[Chunk]:
        """Same windows as chunk(), holding at most max_lines lines in memory."""
        buffer: list[str] = []
        line_num = 0
        fresh = 0
        emitted = False
        for line in lines:
            line_num += 1
            fresh += 1
            buffer.append(line)
            if len(buffer) >= self.max_lines:
                if "".join(buffer).strip():
                    yield self._make(buffer, line_num - len(buffer) + 1, "line-based-streaming")
                    emitted = True
                buffer = buffer[len(buffer) - self.overlap :] if self.overlap else []
                fresh = 0
        if fresh and "".join(buffer).strip() and (not emitted or len(buffer) >= self.min_lines):
            chunk = self._make(buffer, line_num - len(buffer) + 1, "line-based-streaming")
            chunk.metadata["is_last_chunk"] = True
            yield chunk


class StreamingLineChunker(Chunker):
    """Non-overlapping fixed windows for files too large to hold in memory."""

    id = "streaming-line"

    def __init__(self, chunk_lines: int = 100):
        self.chunk_lines = chunk_lines

    def chunk(self, text: str, path: str) -> list[Chunk]:
        return list(self.chunk_stream(text.splitlines(), path))

    def chunk_stream(self, lines: Iterable[str], path: str) -> Iterator[Chunk]:
        buffer: list[str] = []
        start_line = 1
        line_num = 0
        for line in lines:
            line_num += 1
            buffer.append(line)
            if len(buffer) >= self.chunk_lines:
                if "".join(buffer).strip():
                    yield Chunk("\n".join(buffer), start_line, line_num, type="streaming-line")
                buffer = []
                start_line = line_num + 1
        if buffer and "".join(buffer).strip():
            yield Chunk("\n".join(buffer), start_line, line_num, type="streaming-line")
