"""Managed search index client with fingerprint-gated synchronization."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from compliance_agent.errors import SearchIndexError
from compliance_agent.obs.metrics import MetricsRecorder, step_id
from compliance_agent.retrieval.fingerprint import compute_fingerprint
from compliance_agent.storage.kv import KeyLocks, KeyValueStore
from compliance_agent.types import DocumentMetadata, SearchResult

logger = logging.getLogger(__name__)

READY_STATUSES = frozenset({"ready", "indexed"})


class SearchBackend(Protocol):
    """Managed search service consumed by `ManagedSearchClient`."""

    async def sync_index(self, name: str, documents: list[dict[str, Any]]) -> dict[str, Any]:
        """Push the document set; returns at least `{"index": str, "status": str}`."""

    async def query(
        self,
        name: str,
        text: str,
        top_k: int,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Search the index; returns `{"results": [...]}`."""


class HttpSearchBackend:
    """`SearchBackend` over a JSON HTTP API.

    Expects `POST {base_url}/indexes/{name}/sync` and
    `POST {base_url}/indexes/{name}/query`. Response bodies are returned
    as-is; `ManagedSearchClient` validates them.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def sync_index(self, name: str, documents: list[dict[str, Any]]) -> dict[str, Any]:
        return await self._post(f"/indexes/{name}/sync", {"documents": documents})

    async def query(
        self,
        name: str,
        text: str,
        top_k: int,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"query": text, "top_k": top_k}
        if filters:
            body["filters"] = filters
        return await self._post(f"/indexes/{name}/query", body)

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_seconds, transport=self.transport
        ) as client:
            try:
                response = await client.post(path, json=body, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise SearchIndexError(
                    f"Search backend returned {exc.response.status_code} for {path}"
                ) from exc
            except httpx.HTTPError as exc:
                raise SearchIndexError(f"Search backend request failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise SearchIndexError("Search backend returned a non-JSON body") from exc


class ManagedSearchClient:
    """Keeps a backend index in step with a document set and queries it.

    The backend is re-synced only when the SHA-256 fingerprint of the document
    set differs from the one stored after the last successful sync.
    """

    def __init__(
        self,
        backend: SearchBackend,
        store: KeyValueStore,
        index_name: str,
        documents: Sequence[DocumentMetadata],
    ) -> None:
        self._backend = backend
        self._store = store
        self._index_name = index_name
        self._documents = list(documents)
        self._locks = KeyLocks()

    @property
    def fingerprint_key(self) -> str:
        return f"search-index:{self._index_name}:fingerprint"

    async def ensure_index(self, recorder: MetricsRecorder) -> bool:
        """Sync the backend index if needed; returns True when a sync happened."""
        fingerprint = compute_fingerprint(self._documents)
        async with self._locks(self.fingerprint_key):
            cached = await self._store.get(self.fingerprint_key)
            if cached == fingerprint:
                logger.debug("Search index %s is current (%s)", self._index_name, fingerprint[:12])
                return False

            logger.info(
                "Syncing search index %s with %d documents", self._index_name, len(self._documents)
            )
            await recorder.track(
                step_id("search-sync"),
                self._sync,
                {"index": self._index_name, "documents": len(self._documents)},
            )
            await self._store.put(self.fingerprint_key, fingerprint)
            return True

    async def query(
        self,
        question: str,
        recorder: MetricsRecorder,
        top_k: int = 8,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        async def _query() -> dict[str, Any]:
            response = await self._backend.query(
                self._index_name, question, top_k, _build_filters(filters)
            )
            if not _is_query_response(response):
                raise SearchIndexError("Unexpected response from search backend query")
            return response

        response = await recorder.track(
            step_id("search-query"),
            _query,
            {"index": self._index_name, "topK": top_k},
        )
        return [_to_search_result(hit, position) for position, hit in enumerate(response["results"])]

    async def _sync(self) -> dict[str, Any]:
        response = await self._backend.sync_index(
            self._index_name,
            [
                {
                    "id": doc.id,
                    "url": doc.url,
                    "title": doc.title,
                    "metadata": {"language": doc.language, "topics": list(doc.topics)},
                }
                for doc in self._documents
            ],
        )
        if not isinstance(response, dict) or not isinstance(response.get("status"), str):
            raise SearchIndexError("Unexpected response from search index sync")
        if response["status"] not in READY_STATUSES:
            raise SearchIndexError(f"Search index is not ready: {response['status']}")
        return response


def _build_filters(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    return {
        "type": "and",
        "filters": [
            {"type": "term", "key": key, "value": value} for key, value in filters.items()
        ],
    }


def _is_query_response(value: Any) -> bool:
    if not isinstance(value, dict) or not isinstance(value.get("results"), list):
        return False
    return all(
        isinstance(hit, dict)
        and isinstance(hit.get("document_id"), str)
        and isinstance(hit.get("score"), (int, float))
        and not isinstance(hit.get("score"), bool)
        for hit in value["results"]
    )


def _to_search_result(hit: dict[str, Any], position: int) -> SearchResult:
    metadata = hit.get("metadata") or {}
    snippet = hit.get("text")
    if snippet is None and isinstance(metadata.get("snippet"), str):
        snippet = metadata["snippet"]
    return SearchResult(
        id=hit.get("id") or f"{hit['document_id']}-{position}",
        document_id=hit["document_id"],
        score=float(hit["score"]),
        snippet=(snippet or "").strip(),
        reference=hit.get("reference"),
        title=metadata.get("title") or hit.get("title"),
        url=metadata.get("url") or hit.get("url"),
        metadata=dict(metadata),
    )
