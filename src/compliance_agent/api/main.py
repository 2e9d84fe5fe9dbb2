"""FastAPI entrypoint for question submission and run status."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from compliance_agent.agent.base import AgentServices
from compliance_agent.agent.fallback import OfflineInference
from compliance_agent.agent.inference import InferenceClient, LangChainInference
from compliance_agent.config import (
    DEFAULT_DOCUMENTS,
    AgentConfig,
    ChunkingConfig,
    RetrievalConfig,
    Settings,
)
from compliance_agent.errors import RunNotFoundError
from compliance_agent.ingest.chunker import LineChunker
from compliance_agent.ingest.documents import DocumentRepository
from compliance_agent.ingest.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from compliance_agent.obs.logging import setup_logging
from compliance_agent.retrieval.retriever import (
    LocalIndexRetriever,
    ManagedIndexRetriever,
    Retriever,
)
from compliance_agent.retrieval.search_client import HttpSearchBackend, ManagedSearchClient
from compliance_agent.retrieval.section_index import SectionIndexer
from compliance_agent.runs.coordinator import RunCoordinator
from compliance_agent.schemas import QuestionPayload
from compliance_agent.storage.kv import InMemoryKeyValueStore, KeyValueStore, SqliteKeyValueStore

logger = logging.getLogger(__name__)


def _create_inference(settings: Settings) -> InferenceClient:
    if not settings.openai_api_key:
        return OfflineInference()

    from langchain_openai import ChatOpenAI

    return LangChainInference(
        lambda model: ChatOpenAI(model=model, temperature=0, api_key=settings.openai_api_key)
    )


def _create_embedder(settings: Settings) -> Embedder:
    if not settings.openai_api_key:
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key),
        model=settings.embedding_model,
    )


def _create_store(settings: Settings) -> KeyValueStore:
    if settings.store_path:
        return SqliteKeyValueStore(settings.store_path)
    return InMemoryKeyValueStore()


def _create_retriever(
    settings: Settings, store: KeyValueStore, config: RetrievalConfig
) -> Retriever:
    if config.strategy == "managed":
        if not settings.search_endpoint:
            raise ValueError("COMPLIANCE_SEARCH_ENDPOINT is required for the managed strategy")
        backend = HttpSearchBackend(settings.search_endpoint, settings.search_api_key)
        return ManagedIndexRetriever(
            ManagedSearchClient(backend, store, config.index_name, DEFAULT_DOCUMENTS)
        )

    embedder = _create_embedder(settings)
    return LocalIndexRetriever(
        DEFAULT_DOCUMENTS,
        DocumentRepository(store),
        SectionIndexer(store, embedder, LineChunker(ChunkingConfig())),
        embedder,
        config,
    )


def build_coordinator(settings: Settings) -> RunCoordinator:
    """Wire the default collaborators described by `settings`."""
    store = _create_store(settings)
    retrieval_config = RetrievalConfig(
        strategy=settings.retrieval_strategy, index_name=settings.index_name
    )
    services = AgentServices(
        inference=_create_inference(settings),
        retriever=_create_retriever(settings, store, retrieval_config),
        config=AgentConfig(
            chat_model=settings.openai_model,
            obligation_model=settings.openai_model,
            stage_timeout_seconds=settings.stage_timeout_seconds,
        ),
        retrieval_config=retrieval_config,
    )
    return RunCoordinator(store, services)


def create_app(
    coordinator: RunCoordinator | None = None, settings: Settings | None = None
) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings.log_level, settings.log_format)
    coordinator = coordinator or build_coordinator(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await coordinator.shutdown()

    app = FastAPI(title="Compliance Agent", version="0.1.0", lifespan=lifespan)
    app.state.coordinator = coordinator

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": bool(settings.openai_api_key),
            "retrieval_strategy": coordinator.strategy,
        }

    @app.post("/question", status_code=202)
    async def submit_question(request: Request) -> dict[str, str]:
        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail={"error": "Invalid JSON body"}) from exc
        try:
            payload = QuestionPayload.model_validate(body)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail={
                    "error": "Validation failed",
                    "details": exc.errors(include_url=False, include_context=False),
                },
            ) from exc

        record = await coordinator.submit(payload)
        return {"runId": record.id}

    @app.get("/runs/{run_id}")
    async def run_status(run_id: str) -> JSONResponse:
        try:
            record = await coordinator.status(run_id)
        except RunNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return JSONResponse(record.to_json_dict())

    return app


app = create_app()
