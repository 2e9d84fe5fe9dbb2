"""Greedy line-accumulation chunking."""

from __future__ import annotations

import re

from compliance_agent.config import ChunkingConfig
from compliance_agent.types import DocumentChunk

_LINE_SPLIT = re.compile(r"\n+")


class LineChunker:
    """Packs trimmed, non-blank lines into bounded chunks.

    Lines are accumulated in order until the space-joined buffer reaches
    `max_chars`; the buffer is then emitted as one chunk and a new one starts.
    A trailing partial buffer is flushed as the last chunk. A chunk only
    exceeds `max_chars` by the length of the line that crossed the threshold,
    so a single line longer than the threshold becomes its own oversized chunk.

    Chunk ids are `<document_id>-<position>` with positions starting at 0.
    Embeddings are left empty; the section index fills them in.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_text(self, text: str, document_id: str) -> list[DocumentChunk]:
        chunks: list[DocumentChunk] = []
        buffer: list[str] = []
        buffer_length = 0

        for raw_line in _LINE_SPLIT.split(text):
            line = raw_line.strip()
            if not line:
                continue
            buffer_length += len(line) + (1 if buffer else 0)
            buffer.append(line)
            if buffer_length >= self.config.max_chars:
                chunks.append(self._make_chunk(document_id, len(chunks), buffer))
                buffer = []
                buffer_length = 0

        if buffer:
            chunks.append(self._make_chunk(document_id, len(chunks), buffer))
        return chunks

    @staticmethod
    def _make_chunk(document_id: str, position: int, lines: list[str]) -> DocumentChunk:
        return DocumentChunk(
            id=f"{document_id}-{position}",
            document_id=document_id,
            position=position,
            text=" ".join(lines),
        )
