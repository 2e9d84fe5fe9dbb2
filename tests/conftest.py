from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from langchain_core.messages import BaseMessage

from compliance_agent.agent.base import AgentServices
from compliance_agent.agent.inference import InferenceClient
from compliance_agent.agent.prompts import QUESTION_SYSTEM_PROMPT
from compliance_agent.config import AgentConfig, RetrievalConfig
from compliance_agent.ingest.documents import DocumentFetcher
from compliance_agent.obs.metrics import MetricsRecorder
from compliance_agent.retrieval.retriever import Retriever
from compliance_agent.types import DocumentChunk, DocumentMetadata, RankedChunk


class ScriptedInference(InferenceClient):
    """Answers the question prompt and the obligation prompt with fixed text."""

    def __init__(self, question: str = "", obligation: str = "") -> None:
        self.question = question
        self.obligation = obligation
        self.calls: list[tuple[str, list[BaseMessage]]] = []

    async def run(self, model: str, messages: list[BaseMessage]) -> str:
        self.calls.append((model, messages))
        if messages and messages[0].content == QUESTION_SYSTEM_PROMPT:
            return self.question
        return self.obligation


class StaticRetriever(Retriever):
    strategy = "static"

    def __init__(self, hits: list[RankedChunk] | None = None, error: Exception | None = None) -> None:
        self.hits = hits or []
        self.error = error
        self.queries: list[tuple[str, int, dict[str, Any] | None]] = []

    def document_title(self, document_id: str) -> str:
        return f"Title of {document_id}"

    async def retrieve(
        self,
        query: str,
        top_k: int,
        recorder: MetricsRecorder,
        *,
        filters: dict[str, Any] | None = None,
    ) -> list[RankedChunk]:
        self.queries.append((query, top_k, filters))

        async def _search() -> list[RankedChunk]:
            if self.error is not None:
                raise self.error
            return self.hits[:top_k]

        return await recorder.track("static-search", _search)


class FakeFetcher(DocumentFetcher):
    def __init__(self, documents: dict[str, str | bytes]) -> None:
        self.documents = documents
        self.calls: list[str] = []

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        await asyncio.sleep(0)
        content = self.documents[url]
        return content if isinstance(content, bytes) else content.encode("utf-8")


class FakeSearchBackend:
    def __init__(self, status: str = "ready", results: list[dict[str, Any]] | None = None) -> None:
        self.status = status
        self.results = results or []
        self.syncs: list[tuple[str, list[dict[str, Any]]]] = []
        self.queries: list[dict[str, Any]] = []

    async def sync_index(self, name: str, documents: list[dict[str, Any]]) -> dict[str, Any]:
        self.syncs.append((name, documents))
        await asyncio.sleep(0)
        return {"index": name, "status": self.status}

    async def query(
        self,
        name: str,
        text: str,
        top_k: int,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.queries.append({"name": name, "text": text, "top_k": top_k, "filters": filters})
        return {"results": self.results}


def ranked(document_id: str, text: str, score: float, position: int = 0) -> RankedChunk:
    chunk = DocumentChunk(
        id=f"{document_id}-{position}",
        document_id=document_id,
        position=position,
        text=text,
    )
    return RankedChunk(chunk=chunk, score=score)


@pytest.fixture
def corpus() -> list[DocumentMetadata]:
    return [
        DocumentMetadata(
            id="ley-19913",
            url="https://example.test/ley-19913.txt",
            title="Ley 19.913",
            topics=["lavado de activos", "reportes"],
        ),
        DocumentMetadata(
            id="ley-21521",
            url="https://example.test/ley-21521.txt",
            title="Ley 21.521",
            topics=["fintec"],
        ),
    ]


@pytest.fixture
def make_services() -> Callable[..., AgentServices]:
    def _make(
        inference: InferenceClient,
        retriever: Retriever,
        *,
        stage_timeout_seconds: float = 5.0,
        top_k: int = 6,
    ) -> AgentServices:
        return AgentServices(
            inference=inference,
            retriever=retriever,
            config=AgentConfig(stage_timeout_seconds=stage_timeout_seconds),
            retrieval_config=RetrievalConfig(top_k=top_k),
        )

    return _make
