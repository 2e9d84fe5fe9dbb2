import json

import httpx
import pytest

from compliance_agent.errors import DocumentFetchError, SearchIndexError
from compliance_agent.ingest.documents import HttpDocumentFetcher, PlainTextExtractor
from compliance_agent.retrieval.search_client import HttpSearchBackend


@pytest.mark.asyncio
async def test_fetcher_returns_body_bytes() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content="Artículo 1º".encode()))

    data = await HttpDocumentFetcher(transport=transport).fetch("https://example.test/ley.txt")

    assert await PlainTextExtractor().extract_text(data) == "Artículo 1º"


@pytest.mark.asyncio
async def test_fetcher_wraps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404))

    with pytest.raises(DocumentFetchError, match="404"):
        await HttpDocumentFetcher(transport=transport).fetch("https://example.test/missing.txt")


@pytest.mark.asyncio
async def test_search_backend_posts_sync_and_query_bodies() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/sync"):
            return httpx.Response(200, json={"index": "idx", "status": "ready"})
        return httpx.Response(200, json={"results": []})

    backend = HttpSearchBackend(
        "https://search.example.test/", api_key="secret", transport=httpx.MockTransport(handler)
    )

    assert await backend.sync_index("idx", [{"id": "ley-19886"}]) == {"index": "idx", "status": "ready"}
    assert await backend.query("idx", "compras públicas", 3) == {"results": []}

    assert requests[0].url.path == "/indexes/idx/sync"
    assert json.loads(requests[0].content) == {"documents": [{"id": "ley-19886"}]}
    assert requests[0].headers["authorization"] == "Bearer secret"
    assert json.loads(requests[1].content) == {"query": "compras públicas", "top_k": 3}


@pytest.mark.asyncio
async def test_search_backend_wraps_server_errors() -> None:
    backend = HttpSearchBackend(
        "https://search.example.test", transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    with pytest.raises(SearchIndexError, match="503"):
        await backend.query("idx", "q", 1)
