import asyncio
import json

import pytest
from conftest import ScriptedInference, StaticRetriever, ranked

from compliance_agent.agent.base import StageAgent, StageDependencies, StageResult
from compliance_agent.agent.pipeline import NO_ANSWER_SUMMARY, PipelineExecutor, RunContext
from compliance_agent.errors import SearchIndexError, StageTimeoutError
from compliance_agent.obs.metrics import MetricsRecorder
from compliance_agent.schemas import QuestionPayload, ReasoningStep

QUESTION_JSON = json.dumps(
    {
        "normalized_question": "Obligaciones de reporte UAF para fintech",
        "summary": "Reportes de operaciones sospechosas",
        "focus_areas": ["reportes"],
        "assumptions": [],
        "plan": ["Buscar Ley 19.913", "Extraer obligaciones"],
    }
)

ANSWER_JSON = json.dumps(
    {
        "summary": "La fintech debe reportar operaciones sospechosas.",
        "obligations": [
            {
                "id": "obl-1",
                "description": "Reportar operaciones sospechosas a la UAF",
                "source": {"documentId": "ley-19913", "reference": "Art. 3"},
                "rationale": "Es sujeto obligado",
                "actions": ["Designar oficial de cumplimiento"],
                "priority": "high",
            }
        ],
    }
)


def _payload() -> QuestionPayload:
    return QuestionPayload(question="¿Qué debe reportar mi fintech?", targets=["fintech"])


def _hits():
    return [ranked("ley-19913", "Los sujetos obligados deberán informar operaciones sospechosas.", 0.82)]


@pytest.mark.asyncio
async def test_full_pipeline_produces_grounded_answer(make_services) -> None:
    inference = ScriptedInference(question=QUESTION_JSON, obligation=ANSWER_JSON)
    retriever = StaticRetriever(_hits())
    services = make_services(inference, retriever)
    executor = PipelineExecutor(StageDependencies(services, MetricsRecorder()))

    result = await executor.execute(_payload(), RunContext(run_id="run-1"))

    assert [step.stage for step in result.reasoning] == [
        "question",
        "question-analysis",
        "retrieval",
        "analysis",
    ]
    assert retriever.queries[0][0] == "Obligaciones de reporte UAF para fintech"
    assert result.answer.obligations[0].source.score == 0.82
    assert result.artifacts.retrieval.chunks[0].title == "Title of ley-19913"
    assert [metric.tool for metric in result.metrics] == [
        "question-agent",
        "static-search",
        "obligation-agent",
    ]
    assert all(metric.success for metric in result.metrics)


@pytest.mark.asyncio
async def test_retrieval_failure_short_circuits_the_pipeline(make_services) -> None:
    inference = ScriptedInference(question=QUESTION_JSON, obligation=ANSWER_JSON)
    retriever = StaticRetriever(error=SearchIndexError("Search index is not ready: building"))
    executor = PipelineExecutor(StageDependencies(make_services(inference, retriever), MetricsRecorder()))

    result = await executor.execute(_payload(), RunContext(run_id="run-2"))

    stages = [step.stage for step in result.reasoning]
    assert stages == ["question", "question-analysis", "knowledge-agent-error"]
    assert "analysis" not in stages
    assert result.reasoning[-1].details == {"message": "Search index is not ready: building"}
    assert result.answer.summary == NO_ANSWER_SUMMARY
    assert result.answer.obligations == []
    assert len(inference.calls) == 1
    assert result.metrics[-1].success is False


@pytest.mark.asyncio
async def test_steps_are_reported_as_they_are_appended(make_services) -> None:
    services = make_services(ScriptedInference(QUESTION_JSON, ANSWER_JSON), StaticRetriever(_hits()))
    executor = PipelineExecutor(StageDependencies(services, MetricsRecorder()))
    seen: list[str] = []

    async def on_step(step: ReasoningStep) -> None:
        seen.append(step.stage)

    result = await executor.execute(_payload(), RunContext(run_id="run-3", on_step=on_step))

    assert seen == [step.stage for step in result.reasoning]


class SlowStage(StageAgent):
    name = "slow-agent"

    async def run(self, payload, artifacts) -> StageResult:
        await asyncio.sleep(1.0)
        return StageResult(reasoning=ReasoningStep(stage="slow", summary="done"))


@pytest.mark.asyncio
async def test_stage_exceeding_its_budget_raises_timeout(make_services) -> None:
    services = make_services(ScriptedInference(), StaticRetriever(), stage_timeout_seconds=0.05)
    executor = PipelineExecutor(
        StageDependencies(services, MetricsRecorder()),
        stage_builder=lambda deps: [SlowStage(deps)],
    )

    with pytest.raises(StageTimeoutError, match="slow-agent"):
        await executor.execute(_payload(), RunContext(run_id="run-4"))


class UpstreamTimeoutStage(StageAgent):
    name = "upstream-agent"

    async def run(self, payload, artifacts) -> StageResult:
        raise TimeoutError("upstream read timed out")


@pytest.mark.asyncio
async def test_timeout_raised_inside_a_stage_is_a_stage_failure(make_services) -> None:
    services = make_services(ScriptedInference(), StaticRetriever(), stage_timeout_seconds=5.0)
    executor = PipelineExecutor(
        StageDependencies(services, MetricsRecorder()),
        stage_builder=lambda deps: [UpstreamTimeoutStage(deps), SlowStage(deps)],
    )

    result = await executor.execute(_payload(), RunContext(run_id="run-5"))

    assert [step.stage for step in result.reasoning] == ["question", "upstream-agent-error"]
    assert result.reasoning[-1].details == {"message": "upstream read timed out"}
    assert result.answer.summary == NO_ANSWER_SUMMARY
