"""Stage agent contract and the collaborators stages are built with."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from compliance_agent.agent.inference import InferenceClient
from compliance_agent.config import AgentConfig, RetrievalConfig
from compliance_agent.obs.metrics import MetricsRecorder
from compliance_agent.retrieval.retriever import Retriever
from compliance_agent.schemas import AgentArtifacts, QuestionPayload, ReasoningStep


@dataclass(slots=True)
class AgentServices:
    """Long-lived collaborators shared by every run."""

    inference: InferenceClient
    retriever: Retriever
    config: AgentConfig = field(default_factory=AgentConfig)
    retrieval_config: RetrievalConfig = field(default_factory=RetrievalConfig)


@dataclass(slots=True)
class StageDependencies:
    """What a stage needs for one run: shared services plus the run's recorder."""

    services: AgentServices
    recorder: MetricsRecorder


@dataclass(slots=True)
class StageResult:
    """Partial artifact update plus exactly one reasoning entry."""

    reasoning: ReasoningStep
    artifacts: dict[str, Any] = field(default_factory=dict)


class StageAgent(ABC):
    """One named unit of the fixed pipeline sequence.

    Given the same payload and artifacts a stage returns the same partial
    update; its external calls go through `self.recorder`.
    """

    name: str = "stage"

    def __init__(self, deps: StageDependencies) -> None:
        self.services = deps.services
        self.recorder = deps.recorder

    @abstractmethod
    async def run(self, payload: QuestionPayload, artifacts: AgentArtifacts) -> StageResult:
        """Read the artifact bundle and return this stage's contribution."""
