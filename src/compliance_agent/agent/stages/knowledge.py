"""Retrieval stage."""

from __future__ import annotations

from collections.abc import Sequence

from compliance_agent.agent.base import StageAgent, StageResult
from compliance_agent.retrieval.retriever import Retriever
from compliance_agent.schemas import (
    AgentArtifacts,
    QuestionPayload,
    ReasoningStep,
    RetrievalChunk,
    RetrievalResult,
)
from compliance_agent.types import RankedChunk, SearchResult


class KnowledgeAgent(StageAgent):
    """Fetches ranked evidence for the normalized (or raw) question."""

    name = "knowledge-agent"

    async def run(self, payload: QuestionPayload, artifacts: AgentArtifacts) -> StageResult:
        structured = artifacts.structured_question
        query = structured.normalized_question if structured else payload.question
        retriever = self.services.retriever
        top_k = self.services.retrieval_config.top_k

        hits = await retriever.retrieve(
            query,
            top_k,
            self.recorder,
            filters=payload.metadata or None,
        )
        retrieval = RetrievalResult(
            query=query,
            strategy=retriever.strategy,
            chunks=to_retrieval_chunks(hits, retriever),
        )

        return StageResult(
            artifacts={"retrieval": retrieval},
            reasoning=ReasoningStep(
                stage="retrieval",
                summary=f"Retrieved {len(retrieval.chunks)} relevant excerpts",
                details={
                    "query": retrieval.query,
                    "strategy": retrieval.strategy,
                    "topK": top_k,
                    "documentIds": [chunk.document_id for chunk in retrieval.chunks],
                    "scores": [round(chunk.score, 4) for chunk in retrieval.chunks],
                },
            ),
        )


def to_retrieval_chunks(
    hits: Sequence[RankedChunk | SearchResult], retriever: Retriever
) -> list[RetrievalChunk]:
    chunks: list[RetrievalChunk] = []
    for hit in hits:
        if isinstance(hit, RankedChunk):
            chunks.append(
                RetrievalChunk(
                    id=hit.chunk.id,
                    document_id=hit.chunk.document_id,
                    title=retriever.document_title(hit.chunk.document_id),
                    excerpt=hit.chunk.text,
                    score=hit.score,
                    attributes={"position": hit.chunk.position, "rank": hit.rank},
                )
            )
        else:
            attributes = dict(hit.metadata)
            if hit.reference:
                attributes.setdefault("reference", hit.reference)
            if hit.url:
                attributes.setdefault("url", hit.url)
            chunks.append(
                RetrievalChunk(
                    id=hit.id,
                    document_id=hit.document_id,
                    title=hit.title or "",
                    excerpt=hit.snippet,
                    score=hit.score,
                    attributes=attributes or None,
                )
            )
    return chunks
