"""Error taxonomy for runs, stages and external collaborators."""

from __future__ import annotations


class ComplianceAgentError(Exception):
    """Base class for errors raised by this package."""


class RunNotFoundError(KeyError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id

    def __str__(self) -> str:
        return str(self.args[0])


class InferenceResponseError(ComplianceAgentError):
    """The inference service returned something that is not usable text."""


class EmbeddingError(ComplianceAgentError):
    """An embedding call returned an empty or malformed vector."""


class DocumentFetchError(ComplianceAgentError):
    """A source document could not be downloaded or extracted."""


class SearchIndexError(ComplianceAgentError):
    """The managed search backend returned an unexpected response."""


class StageTimeoutError(ComplianceAgentError):
    """A pipeline stage exceeded its configured time budget."""

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        super().__init__(f"Stage '{stage}' timed out after {timeout_seconds:.1f}s")
        self.stage = stage
        self.timeout_seconds = timeout_seconds
