"""Pydantic models for run records, stage artifacts and model output."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RunStatus = Literal["pending", "running", "completed", "failed"]
Priority = Literal["low", "medium", "high", "critical"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _CamelModel(BaseModel):
    """Accepts snake_case or camelCase input and dumps camelCase by alias."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class QuestionPayload(_CamelModel):
    """A validated run submission."""

    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1)
    targets: list[str] | None = None
    metadata: dict[str, Any] | None = None


class ReasoningStep(_CamelModel):
    """One audit-trail entry; never mutated once written."""

    model_config = ConfigDict(frozen=True)

    stage: str
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now)


class ToolCallMetric(_CamelModel):
    tool: str
    latency_ms: float
    success: bool
    timestamp: str = Field(default_factory=utc_now)
    metadata: dict[str, Any] | None = None
    error_message: str | None = None


class TargetMatch(_CamelModel):
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    justification: str


class ObligationSource(_CamelModel):
    document_id: str
    reference: str
    score: float | None = None
    excerpt: str | None = None
    attributes: dict[str, Any] | None = None


class Obligation(_CamelModel):
    id: str
    description: str
    source: ObligationSource
    rationale: str
    actions: list[str] | None = None
    targets: list[TargetMatch] | None = None
    priority: Priority | None = None


class AgentAnswer(_CamelModel):
    summary: str
    obligations: list[Obligation]
    disclaimers: list[str] | None = None


class StructuredQuestion(_CamelModel):
    normalized_question: str
    summary: str
    focus_areas: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    plan: list[str] = Field(default_factory=list)


class RetrievalChunk(_CamelModel):
    id: str
    document_id: str
    title: str = ""
    excerpt: str = ""
    score: float = 0.0
    attributes: dict[str, Any] | None = None


class RetrievalResult(_CamelModel):
    query: str
    strategy: str | None = None
    model: str | None = None
    reranker: str | None = None
    chunks: list[RetrievalChunk] = Field(default_factory=list)


class AgentArtifacts(BaseModel):
    """Artifact bundle threaded through the pipeline stages.

    Keys are only ever added or replaced; `merge` ignores `None` values so a
    later stage cannot erase what an earlier stage produced.
    """

    structured_question: StructuredQuestion | None = None
    retrieval: RetrievalResult | None = None
    answer: AgentAnswer | None = None

    def merge(self, partial: dict[str, Any]) -> None:
        for key, value in partial.items():
            if key not in type(self).model_fields:
                raise KeyError(f"Unknown artifact: {key}")
            if value is not None:
                setattr(self, key, value)


class RunMetrics(_CamelModel):
    total_latency_ms: float | None = None
    tool_calls: list[ToolCallMetric] = Field(default_factory=list)


class RunRecord(_CamelModel):
    """Durable state of one run, owned by its coordinator slot."""

    id: str
    question: str
    targets: list[str] | None = None
    metadata: dict[str, Any] | None = None
    status: RunStatus = "pending"
    created_at: str
    updated_at: str
    started_at: str | None = None
    completed_at: str | None = None
    answer: AgentAnswer | None = None
    reasoning: list[ReasoningStep] = Field(default_factory=list)
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    error: str | None = None
