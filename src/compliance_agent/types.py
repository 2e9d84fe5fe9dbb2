"""Shared domain models for documents and ranked evidence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DocumentMetadata:
    """Static identity of a source document in the corpus."""

    id: str
    url: str
    title: str
    language: str = "es"
    topics: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DocumentRecord:
    """A fetched source document with its extracted text."""

    metadata: DocumentMetadata
    text: str


@dataclass(slots=True)
class DocumentChunk:
    """A position-ordered section of a document with its embedding."""

    id: str
    document_id: str
    position: int
    text: str
    embedding: list[float] = field(default_factory=list)


@dataclass(slots=True)
class RankedChunk:
    """A local-index retrieval result."""

    chunk: DocumentChunk
    score: float
    rank: int = 0


@dataclass(slots=True)
class SearchResult:
    """A managed search backend hit mapped into the common result shape."""

    id: str
    document_id: str
    score: float
    snippet: str = ""
    reference: str | None = None
    title: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
