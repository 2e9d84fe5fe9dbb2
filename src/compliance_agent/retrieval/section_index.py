"""Local chunk + embedding index cached per document."""

from __future__ import annotations

import logging
from dataclasses import asdict

from compliance_agent.errors import EmbeddingError
from compliance_agent.ingest.chunker import LineChunker
from compliance_agent.ingest.embedder import Embedder
from compliance_agent.obs.metrics import MetricsRecorder, step_id
from compliance_agent.retrieval.fingerprint import document_fingerprint
from compliance_agent.storage.kv import KeyLocks, KeyValueStore
from compliance_agent.types import DocumentChunk, DocumentRecord

logger = logging.getLogger(__name__)


class SectionIndexer:
    """Chunks and embeds a document once per metadata fingerprint.

    The cache entry `doc:<id>:chunks` holds the fingerprint it was built from;
    it is rebuilt only when the document's fingerprint no longer matches.
    """

    def __init__(
        self,
        store: KeyValueStore,
        embedder: Embedder,
        chunker: LineChunker | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = chunker or LineChunker()
        self._locks = KeyLocks()

    async def ensure_index(
        self, document: DocumentRecord, recorder: MetricsRecorder
    ) -> list[DocumentChunk]:
        metadata = document.metadata
        cache_key = f"doc:{metadata.id}:chunks"
        fingerprint = document_fingerprint(metadata)

        async with self._locks(cache_key):
            cached = await self._store.get(cache_key)
            if cached and cached.get("fingerprint") == fingerprint:
                logger.debug("Section index hit for %s", metadata.id)
                return [DocumentChunk(**item) for item in cached["chunks"]]

            logger.info("Building section index for %s", metadata.id)
            chunks = await self._build(document, recorder)
            await self._store.put(
                cache_key,
                {"fingerprint": fingerprint, "chunks": [asdict(chunk) for chunk in chunks]},
            )
            return chunks

    async def _build(
        self, document: DocumentRecord, recorder: MetricsRecorder
    ) -> list[DocumentChunk]:
        metadata = document.metadata
        chunks = self._chunker.chunk_text(document.text, metadata.id)
        if not chunks:
            return chunks

        embeddings = await recorder.track(
            step_id("embed-chunks"),
            lambda: self._embedder.embed_documents([chunk.text for chunk in chunks]),
            {"documentId": metadata.id, "chunks": len(chunks), "model": self._embedder.model},
        )
        if len(embeddings) != len(chunks):
            raise EmbeddingError(
                f"Expected {len(chunks)} embeddings for {metadata.id}, received {len(embeddings)}"
            )
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            chunk.embedding = embedding
        return chunks
