"""Fixed-order stage pipeline with short-circuit on stage failure."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from compliance_agent.agent.base import StageAgent, StageDependencies, StageResult
from compliance_agent.agent.stages.knowledge import KnowledgeAgent
from compliance_agent.agent.stages.obligation import ObligationAgent
from compliance_agent.agent.stages.question import QuestionAgent
from compliance_agent.errors import StageTimeoutError
from compliance_agent.obs.logging import set_stage_context
from compliance_agent.schemas import (
    AgentAnswer,
    AgentArtifacts,
    QuestionPayload,
    ReasoningStep,
    ToolCallMetric,
)

logger = logging.getLogger(__name__)

NO_ANSWER_SUMMARY = "No answer could be produced"

StageBuilder = Callable[[StageDependencies], list[StageAgent]]
StepCallback = Callable[[ReasoningStep], Awaitable[None]]


def default_stages(deps: StageDependencies) -> list[StageAgent]:
    """question analysis -> retrieval -> obligation synthesis."""
    return [QuestionAgent(deps), KnowledgeAgent(deps), ObligationAgent(deps)]


@dataclass(slots=True)
class RunContext:
    """Per-run execution context handed to the executor."""

    run_id: str
    on_step: StepCallback | None = None


@dataclass(slots=True)
class PipelineResult:
    answer: AgentAnswer
    reasoning: list[ReasoningStep]
    metrics: list[ToolCallMetric] = field(default_factory=list)
    artifacts: AgentArtifacts = field(default_factory=AgentArtifacts)


class PipelineExecutor:
    """Runs the stage list in order over one shared artifact bundle.

    A stage that raises is recorded as a `<name>-error` reasoning entry and
    stops the pipeline; the exception does not propagate. A stage that exceeds
    `stage_timeout_seconds` raises `StageTimeoutError` out of `execute`.
    The answer is never left undefined: without a synthesized answer the
    executor returns an empty placeholder.
    """

    def __init__(
        self,
        deps: StageDependencies,
        stage_builder: StageBuilder = default_stages,
    ) -> None:
        self.recorder = deps.recorder
        self.stage_timeout_seconds = deps.services.config.stage_timeout_seconds
        self.stages = stage_builder(deps)

    async def execute(self, payload: QuestionPayload, context: RunContext) -> PipelineResult:
        artifacts = AgentArtifacts()
        reasoning: list[ReasoningStep] = []

        await self._append(
            reasoning,
            ReasoningStep(
                stage="question",
                summary="Question received",
                details={
                    "question": payload.question,
                    "targets": payload.targets,
                    "metadata": payload.metadata,
                },
            ),
            context,
        )

        for stage in self.stages:
            set_stage_context(stage.name)
            try:
                result = await self._run_stage(stage, payload, artifacts)
            except StageTimeoutError:
                raise
            except Exception as exc:
                logger.error("Stage '%s' failed: %s", stage.name, exc)
                await self._append(
                    reasoning,
                    ReasoningStep(
                        stage=f"{stage.name}-error",
                        summary=f"Stage {stage.name} failed",
                        details={"message": str(exc) or exc.__class__.__name__},
                    ),
                    context,
                )
                break
            finally:
                set_stage_context(None)

            artifacts.merge(result.artifacts)
            await self._append(reasoning, result.reasoning, context)
            logger.info("Stage '%s' completed: %s", stage.name, result.reasoning.summary)

        answer = artifacts.answer or AgentAnswer(summary=NO_ANSWER_SUMMARY, obligations=[])
        return PipelineResult(
            answer=answer,
            reasoning=reasoning,
            metrics=self.recorder.metrics,
            artifacts=artifacts,
        )

    async def _run_stage(
        self, stage: StageAgent, payload: QuestionPayload, artifacts: AgentArtifacts
    ) -> StageResult:
        deadline = asyncio.timeout(self.stage_timeout_seconds)
        try:
            async with deadline:
                return await stage.run(payload, artifacts)
        except TimeoutError as exc:
            # A TimeoutError raised by the stage itself is an ordinary stage failure.
            if deadline.expired():
                raise StageTimeoutError(stage.name, self.stage_timeout_seconds) from exc
            raise

    @staticmethod
    async def _append(
        reasoning: list[ReasoningStep], step: ReasoningStep, context: RunContext
    ) -> None:
        reasoning.append(step)
        if context.on_step is not None:
            await context.on_step(step)
