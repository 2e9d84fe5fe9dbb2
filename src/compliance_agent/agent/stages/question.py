"""Question-normalization stage."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError

from compliance_agent.agent.base import StageAgent, StageResult
from compliance_agent.agent.parsing import parse_json_object
from compliance_agent.agent.prompts import QUESTION_PROMPT
from compliance_agent.schemas import (
    AgentArtifacts,
    QuestionPayload,
    ReasoningStep,
    StructuredQuestion,
)

logger = logging.getLogger(__name__)

DEFAULT_PLAN = ["Search the regulatory corpus", "Extract obligations"]


class _QuestionResponse(BaseModel):
    normalized_question: str = ""
    summary: str = ""
    focus_areas: list[str] = []
    assumptions: list[str] = []
    plan: list[str] = []


class QuestionAgent(StageAgent):
    """Turns the raw question into a normalized query and a research plan."""

    name = "question-agent"

    async def run(self, payload: QuestionPayload, artifacts: AgentArtifacts) -> StageResult:
        model = self.services.config.chat_model
        messages = QUESTION_PROMPT.format_messages(
            question=payload.question,
            targets=", ".join(payload.targets or []) or "(none)",
        )
        raw = await self.recorder.track(
            self.name,
            lambda: self.services.inference.run(model, messages),
            {"model": model},
        )
        structured = parse_structured_question(raw, payload.question)

        return StageResult(
            artifacts={"structured_question": structured},
            reasoning=ReasoningStep(
                stage="question-analysis",
                summary="Question normalized and research plan generated",
                details=structured.model_dump(by_alias=True),
            ),
        )


def parse_structured_question(raw: str, question: str) -> StructuredQuestion:
    """Hydrate model output, falling back to the raw question when unusable."""
    try:
        response = _QuestionResponse.model_validate(parse_json_object(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("Unparsable question analysis, using raw question: %s", exc)
        return StructuredQuestion(
            normalized_question=question,
            summary="The model response could not be parsed; the original question is used",
            plan=list(DEFAULT_PLAN),
        )

    normalized = response.normalized_question.strip() or response.summary.strip() or question
    return StructuredQuestion(
        normalized_question=normalized,
        summary=response.summary.strip() or normalized,
        focus_areas=response.focus_areas,
        assumptions=response.assumptions,
        plan=response.plan or list(DEFAULT_PLAN),
    )
