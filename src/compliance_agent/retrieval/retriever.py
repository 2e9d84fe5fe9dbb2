"""Retrieval strategies sharing one `retrieve(query, top_k)` contract."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import asdict
from typing import Any

from compliance_agent.config import RetrievalConfig
from compliance_agent.ingest.documents import DocumentRepository
from compliance_agent.ingest.embedder import Embedder
from compliance_agent.obs.metrics import MetricsRecorder, step_id
from compliance_agent.retrieval.ranker import rank_chunks
from compliance_agent.retrieval.search_client import ManagedSearchClient
from compliance_agent.retrieval.section_index import SectionIndexer
from compliance_agent.types import DocumentChunk, DocumentMetadata, RankedChunk, SearchResult

logger = logging.getLogger(__name__)


class Retriever(ABC):
    """Ranked-evidence contract used by the knowledge stage."""

    strategy: str = "unknown"

    def document_title(self, document_id: str) -> str:
        return ""

    @abstractmethod
    async def retrieve(
        self,
        query: str,
        top_k: int,
        recorder: MetricsRecorder,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[RankedChunk] | list[SearchResult]:
        """Return evidence for `query`, best-first, at most `top_k` items."""


class LocalIndexRetriever(Retriever):
    """Chunk + embed + cosine-rank over the configured document set.

    Documents are fetched and indexed lazily on first use and served from the
    per-document cache afterwards. `filters` restrict the candidate documents
    by metadata (`id`, `language`, `topics`, ...).
    """

    strategy = "local"

    def __init__(
        self,
        documents: Sequence[DocumentMetadata],
        repository: DocumentRepository,
        indexer: SectionIndexer,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.documents = list(documents)
        self.repository = repository
        self.indexer = indexer
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self._titles = {document.id: document.title for document in self.documents}

    def document_title(self, document_id: str) -> str:
        return self._titles.get(document_id, "")

    async def retrieve(
        self,
        query: str,
        top_k: int,
        recorder: MetricsRecorder,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[RankedChunk]:
        candidates: list[DocumentChunk] = []
        for metadata in self.documents:
            if not _metadata_match(metadata, filters):
                continue
            document = await self.repository.get_document(metadata, recorder)
            candidates.extend(await self.indexer.ensure_index(document, recorder))

        if not candidates:
            logger.info("No indexed chunks available for query")
            return []

        query_embedding = await recorder.track(
            step_id("embed-question"),
            lambda: self.embedder.embed_query(query),
            {"model": self.embedder.model},
        )
        ranked = rank_chunks(
            query_embedding,
            candidates,
            top_k=top_k,
            score_threshold=self.config.score_threshold,
        )
        logger.info("Ranked %d chunks, returning %d", len(candidates), len(ranked))
        return ranked


class ManagedIndexRetriever(Retriever):
    """Delegates ranking to a managed search backend."""

    strategy = "managed"

    def __init__(self, client: ManagedSearchClient) -> None:
        self.client = client

    async def retrieve(
        self,
        query: str,
        top_k: int,
        recorder: MetricsRecorder,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        await self.client.ensure_index(recorder)
        hits = await self.client.query(query, recorder, top_k=top_k, filters=filters)
        return hits[:top_k]


def _metadata_match(metadata: DocumentMetadata, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    fields = asdict(metadata)
    for key, value in filters.items():
        if key not in fields:
            continue
        current = fields[key]
        if isinstance(current, list):
            if value not in current:
                return False
        elif current != value:
            return False
    return True
