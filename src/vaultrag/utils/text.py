"""Text helpers including markdown-aware recursive chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence

DEFAULT_CHUNK_OVERLAP = 200

# Tried in order; the first one present in the text is used to split it.
MARKDOWN_SEPARATORS: Sequence[str] = (
    r"\n#{1,6} ",
    r"```\n",
    r"\n\*\*\*+\n",
    r"\n---+\n",
    r"\n___+\n",
    r"\n\n",
    r"\n",
    r" ",
    "",
)


@dataclass(slots=True)
class TextChunk:
    content: str
    start_line: int
    end_line: int


def strip_null_bytes(text: str) -> str:
    return text.replace("\x00", "")


def _split_keeping_separator(text: str, separator: str) -> List[str]:
    if not separator:
        return list(text)
    parts = re.split(f"({separator})", text)
    # Re-attach every separator to the piece that follows it.
    splits = [parts[0]] + [parts[i] + parts[i + 1] for i in range(1, len(parts) - 1, 2)]
    return [piece for piece in splits if piece]


class MarkdownSplitter:
    """Recursively split markdown on structural boundaries.

    Text is first cut at headings, code fences and horizontal rules, then at
    blank lines, line breaks, spaces and finally single characters, until every
    piece fits into ``chunk_size`` characters. Adjacent small pieces are merged
    back together, keeping up to ``overlap`` characters of context between
    consecutive chunks.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        *,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: Sequence[str] = MARKDOWN_SEPARATORS,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.overlap = max(0, min(overlap, chunk_size // 2))
        self.separators = list(separators)

    def split_text(self, text: str) -> List[str]:
        return self._split(text, self.separators)

    def create_chunks(self, text: str) -> List[TextChunk]:
        """Split ``text`` and locate each piece's 1-indexed inclusive line range."""
        chunks: List[TextChunk] = []
        search_from = 0
        for piece in self.split_text(text):
            offset = text.find(piece, search_from)
            if offset < 0:
                offset = text.find(piece)
            start_line = text.count("\n", 0, offset) + 1
            end_line = start_line + piece.count("\n")
            chunks.append(TextChunk(content=piece, start_line=start_line, end_line=end_line))
            search_from = offset + 1
        return chunks

    def _split(self, text: str, separators: List[str]) -> List[str]:
        separator = separators[-1]
        remaining: List[str] = []
        for index, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if re.search(candidate, text):
                separator = candidate
                remaining = separators[index + 1 :]
                break

        final: List[str] = []
        pending: List[str] = []
        for piece in _split_keeping_separator(text, separator):
            if len(piece) < self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                final.extend(self._merge(pending))
                pending = []
            if remaining:
                final.extend(self._split(piece, remaining))
            else:
                final.append(piece)
        if pending:
            final.extend(self._merge(pending))
        return final

    def _merge(self, pieces: List[str]) -> List[str]:
        merged: List[str] = []
        current: List[str] = []
        total = 0
        for piece in pieces:
            length = len(piece)
            if current and total + length > self.chunk_size:
                joined = "".join(current).strip()
                if joined:
                    merged.append(joined)
                while current and (
                    total > self.overlap or total + length > self.chunk_size
                ):
                    total -= len(current.pop(0))
            current.append(piece)
            total += length
        joined = "".join(current).strip()
        if joined:
            merged.append(joined)
        return merged


def split_markdown(
    text: str, *, chunk_size: int = 1000, overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[TextChunk]:
    """Convenience wrapper around :class:`MarkdownSplitter`."""
    return MarkdownSplitter(chunk_size, overlap=overlap).create_chunks(text)
