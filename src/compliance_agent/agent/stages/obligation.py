"""Obligation synthesis stage."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from compliance_agent.agent.base import StageAgent, StageResult
from compliance_agent.agent.parsing import parse_json_object
from compliance_agent.agent.prompts import OBLIGATION_PROMPT
from compliance_agent.schemas import (
    AgentAnswer,
    AgentArtifacts,
    Obligation,
    QuestionPayload,
    ReasoningStep,
    RetrievalChunk,
    RetrievalResult,
)

logger = logging.getLogger(__name__)

NO_CONTEXT = "No context retrieved"
MANUAL_REVIEW_DISCLAIMER = "Verify the model response manually."


class ObligationAgent(StageAgent):
    """Synthesizes structured obligations from the question and the evidence."""

    name = "obligation-agent"

    async def run(self, payload: QuestionPayload, artifacts: AgentArtifacts) -> StageResult:
        structured = artifacts.structured_question
        retrieval = artifacts.retrieval
        model = self.services.config.obligation_model

        messages = OBLIGATION_PROMPT.format_messages(
            question=payload.question,
            plan="; ".join(structured.plan) if structured and structured.plan else "(no plan)",
            context=format_context(retrieval),
            targets=", ".join(payload.targets or []) or "(none provided)",
        )
        raw = await self.recorder.track(
            self.name,
            lambda: self.services.inference.run(model, messages),
            {"model": model, "contextChunks": len(retrieval.chunks) if retrieval else 0},
        )
        answer = parse_answer(raw, retrieval)

        return StageResult(
            artifacts={"answer": answer},
            reasoning=ReasoningStep(
                stage="analysis",
                summary=f"Generated {len(answer.obligations)} structured obligations",
                details={
                    "obligations": [obligation.id for obligation in answer.obligations],
                    "disclaimerCount": len(answer.disclaimers or []),
                },
            ),
        )


def format_context(retrieval: RetrievalResult | None) -> str:
    if retrieval is None or not retrieval.chunks:
        return NO_CONTEXT
    blocks = [
        f"### Context {index}\n"
        f"Document: {chunk.title or chunk.document_id}\n"
        f"Reference: {chunk.document_id}\n"
        f"Score: {chunk.score:.4f}\n"
        f"{chunk.excerpt}"
        for index, chunk in enumerate(retrieval.chunks, start=1)
    ]
    return "\n\n".join(blocks)


def parse_answer(raw: str, retrieval: RetrievalResult | None) -> AgentAnswer:
    """Validate model output and ground each obligation in the evidence.

    Unparsable or schema-invalid output yields a degraded answer with no
    obligations and explanatory disclaimers instead of an exception.
    """
    try:
        parsed = AgentAnswer.model_validate(parse_json_object(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("Obligation output rejected: %s", exc)
        return AgentAnswer(
            summary="The model response could not be parsed.",
            obligations=[],
            disclaimers=[MANUAL_REVIEW_DISCLAIMER, str(exc)],
        )

    chunks = retrieval.chunks if retrieval else []
    obligations: list[Obligation] = []
    unresolved: list[str] = []
    for obligation in parsed.obligations:
        match = _find_evidence(obligation, chunks)
        if chunks and match is None:
            unresolved.append(obligation.id)
            continue
        obligations.append(_backfill(obligation, match))

    disclaimers = list(parsed.disclaimers or [])
    if unresolved:
        disclaimers.append(
            "Discarded obligations citing documents outside the retrieved context: "
            + ", ".join(unresolved)
        )
    return AgentAnswer(
        summary=parsed.summary,
        obligations=obligations,
        disclaimers=disclaimers or None,
    )


def _find_evidence(obligation: Obligation, chunks: list[RetrievalChunk]) -> RetrievalChunk | None:
    source = obligation.source
    for chunk in chunks:
        if chunk.id == source.reference:
            return chunk
    for chunk in chunks:
        if chunk.document_id == source.document_id:
            return chunk
    return None


def _backfill(obligation: Obligation, evidence: RetrievalChunk | None) -> Obligation:
    if evidence is None:
        return obligation
    source = obligation.source
    return obligation.model_copy(
        update={
            "source": source.model_copy(
                update={
                    "score": source.score if source.score is not None else evidence.score,
                    "excerpt": source.excerpt if source.excerpt is not None else evidence.excerpt,
                    "attributes": source.attributes
                    if source.attributes is not None
                    else evidence.attributes,
                }
            )
        }
    )
