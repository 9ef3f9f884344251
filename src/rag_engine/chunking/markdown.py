"""Structure-based chunking for Markdown: heading sections plus fenced code blocks."""

import re

from rag_engine.chunking.base import Chunk, Chunker

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")
FENCE_PATTERN = re.compile(r"^```\s*([\w+-]*)\s*$")


class MarkdownChunker(Chunker):
    id = "markdown-structure"
    extensions = (".md", ".mdx", ".markdown")
    languages = ("markdown", "mdx")

    def __init__(self, max_lines: int = 150, min_lines: int = 30, include_code_blocks: bool = True):
        self.max_lines = max_lines
        self.min_lines = min_lines
        self.include_code_blocks = include_code_blocks

    def chunk(self, text: str, path: str) -> list[Chunk]:
        lines = text.splitlines()
        chunks = self._sections(lines)
        if self.include_code_blocks:
            chunks.extend(self._code_blocks(lines))
        return chunks

    def _sections(self, lines: list[str]) -> list[Chunk]:
        """Split at headings. Sections shorter than min_lines merge into the next one."""
        sections: list[tuple[int, int, str | None, int]] = []
        start, title, level = 0, None, 0
        in_fence = False
        for i, line in enumerate(lines):
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                continue
            m = None if in_fence else HEADING_PATTERN.match(line)
            if m and i > start and i - start >= self.min_lines:
                sections.append((start, i - 1, title, level))
                start, title, level = i, m.group(2).strip(), len(m.group(1))
            elif m and title is None:
                title, level = m.group(2).strip(), len(m.group(1))
        if start < len(lines):
            sections.append((start, len(lines) - 1, title, level))

        chunks: list[Chunk] = []
        for s, e, t, lvl in sections:
            for i in range(s, e + 1, self.max_lines):
                block = lines[i : min(e + 1, i + self.max_lines)]
                if not "".join(block).strip():
                    continue
                chunks.append(
                    Chunk(
                        text="\n".join(block),
                        start_line=i + 1,
                        end_line=i + len(block),
                        type="markdown-heading",
                        name=t,
                        metadata={"heading_level": lvl, "heading_title": t},
                    )
                )
        return chunks

    def _code_blocks(self, lines: list[str]) -> list[Chunk]:
        blocks: list[Chunk] = []
        start: int | None = None
        language = ""
        for i, line in enumerate(lines):
            m = FENCE_PATTERN.match(line)
            if not m:
                continue
            if start is None:
                start, language = i, m.group(1)
                continue
            body = lines[start + 1 : i]
            if "".join(body).strip():
                blocks.append(
                    Chunk(
                        text="\n".join(body),
                        start_line=start + 2,
                        end_line=i,
                        type="code-block",
                        metadata={"language": language or None},
                    )
                )
            start = None
        return blocks
