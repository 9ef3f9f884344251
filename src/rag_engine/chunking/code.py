"""Chunk code by logical units (function, class, interface) for Python and JS/TS."""

import re

from rag_engine.chunking.base import Chunk, Chunker
from rag_engine.chunking.line_based import LineBasedChunker

# Regex for logical boundaries (Python, JS/TS)
BOUNDARY_PATTERN = re.compile(
    r"^(\s*)(?:export\s+(?:default\s+)?)?(?:abstract\s+)?"
    r"(def|class|async def|async function|function|interface|type|enum|namespace)\s+(\w+)"
)
IMPORT_PATTERN = re.compile(r"^\s*(import\s|from\s+\S+\s+import\s|using\s|const\s+\w+\s*=\s*require\()")
UNIT_TYPES = {
    "def": "function",
    "async def": "function",
    "function": "function",
    "async function": "function",
    "class": "class",
    "interface": "interface",
    "type": "type",
    "enum": "enum",
    "namespace": "module",
}
MAX_CONTEXT_LINES = 20


def find_boundaries(lines: list[str]) -> list[tuple[int, int, re.Match]]:
    """(line index, indent width, match) for every def/class/function line."""
    found = []
    for i, line in enumerate(lines):
        m = BOUNDARY_PATTERN.match(line)
        if m:
            found.append((i, len(m.group(1)), m))
    return found


class CodeChunker(Chunker):
    """One chunk per outermost def/class/function unit; oversized units are split.

    A class that does not fit is cut at its method boundaries, packing consecutive
    methods together up to max_lines. Each split carries the file's import lines in
    metadata["context"] so the piece still reads in context.
    """

    id = "code-boundary"
    extensions = (".py", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
    languages = ("python", "javascript", "typescript")

    def __init__(self, max_lines: int = 150, min_lines: int = 1):
        self.max_lines = max_lines
        self.min_lines = min_lines
        self._fallback = LineBasedChunker(max_lines=max_lines, min_lines=min_lines, overlap=0)

    def chunk(self, text: str, path: str) -> list[Chunk]:
        lines = text.splitlines()
        if not lines:
            return []

        matches = find_boundaries(lines)
        # Fallback when no def/class found
        if not matches:
            return self._fallback.chunk(text, path)

        outer = min(indent for _, indent, _ in matches)
        boundaries: list[tuple[int, str | None, str]] = [(0, None, "module")]
        boundaries += [(i, m.group(3), UNIT_TYPES[m.group(2)]) for i, indent, m in matches if indent == outer]

        context = [line for line in lines if IMPORT_PATTERN.match(line)][:MAX_CONTEXT_LINES]
        chunks: list[Chunk] = []
        for idx, (start, name, unit_type) in enumerate(boundaries):
            end = boundaries[idx + 1][0] - 1 if idx + 1 < len(boundaries) else len(lines) - 1
            if end < start:
                continue
            unit = lines[start : end + 1]
            if not "".join(unit).strip():
                continue
            if len(unit) <= self.max_lines:
                chunks.append(Chunk("\n".join(unit), start + 1, end + 1, type=unit_type, name=name))
                continue
            pieces = self._member_pieces(unit) if unit_type == "class" else [(0, len(unit))]
            chunks.extend(self._split(unit, start, pieces, name, unit_type, context))
        return chunks

    def _member_pieces(self, unit: list[str]) -> list[tuple[int, int]]:
        """Pack the class header and its methods into [start, end) ranges of at most max_lines."""
        nested = [(i, indent) for i, indent, _ in find_boundaries(unit) if i > 0]
        if not nested:
            return [(0, len(unit))]
        member_indent = min(indent for _, indent in nested)
        cuts = [0] + [i for i, indent in nested if indent == member_indent] + [len(unit)]

        pieces: list[tuple[int, int]] = []
        start = cuts[0]
        for prev, cut in zip(cuts[1:-1], cuts[2:]):
            if cut - start > self.max_lines:
                pieces.append((start, prev))
                start = prev
        pieces.append((start, len(unit)))
        return pieces

    def _split(
        self,
        unit: list[str],
        offset: int,
        pieces: list[tuple[int, int]],
        name: str | None,
        unit_type: str,
        context: list[str],
    ) -> list[Chunk]:
        windows = [
            (i, min(i + self.max_lines, end))
            for start, end in pieces
            for i in range(start, end, self.max_lines)
        ]
        windows = [(s, e) for s, e in windows if "".join(unit[s:e]).strip()]
        return [
            Chunk(
                text="\n".join(unit[s:e]),
                start_line=offset + s + 1,
                end_line=offset + e,
                type=unit_type,
                name=name,
                metadata={
                    "split": True,
                    "part": part,
                    "parts": len(windows),
                    "context": "\n".join(context),
                },
            )
            for part, (s, e) in enumerate(windows, start=1)
        ]
