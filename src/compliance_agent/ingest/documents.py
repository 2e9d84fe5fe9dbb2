"""Document fetching, text extraction and extracted-text caching."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from urllib.parse import urlsplit

import fitz
import httpx

from compliance_agent.errors import DocumentFetchError
from compliance_agent.obs.metrics import MetricsRecorder, step_id
from compliance_agent.retrieval.fingerprint import document_fingerprint
from compliance_agent.storage.kv import KeyLocks, KeyValueStore
from compliance_agent.types import DocumentMetadata, DocumentRecord

logger = logging.getLogger(__name__)


class DocumentFetcher(ABC):
    """Downloads raw document bytes."""

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Return the raw bytes found at `url`."""


class TextExtractor(ABC):
    """Turns raw document bytes into normalized text."""

    step_name: str = "extract-text"

    @abstractmethod
    async def extract_text(self, data: bytes) -> str:
        """Extract plain text from raw bytes."""


class HttpDocumentFetcher(DocumentFetcher):
    def __init__(
        self, timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, follow_redirects=True, transport=self.transport
        ) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise DocumentFetchError(
                    f"Could not download {url}: {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise DocumentFetchError(f"Could not download {url}: {exc}") from exc
        return response.content


class PlainTextExtractor(TextExtractor):
    """Decodes UTF-8 text; undecodable bytes are replaced, not dropped."""

    async def extract_text(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")


class PdfTextExtractor(TextExtractor):
    """Extracts page text from PDF bytes with PyMuPDF.

    Each page becomes a `[Página N]` header line followed by the page text with
    whitespace collapsed, so the line chunker never splits inside a page line.
    """

    step_name = "parse-pdf"

    async def extract_text(self, data: bytes) -> str:
        return await asyncio.to_thread(self._extract, data)

    @staticmethod
    def _extract(data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except RuntimeError as exc:
            raise DocumentFetchError(f"Could not parse PDF: {exc}") from exc

        pages: list[str] = []
        try:
            for page_number, page in enumerate(doc, start=1):
                text = " ".join(page.get_text("text").split())
                pages.append(f"[Página {page_number}]\n{text}")
        finally:
            doc.close()
        return "\n\n".join(pages)


def default_extractor(url: str) -> TextExtractor:
    """PDF extraction for `.pdf` URLs, plain UTF-8 decoding otherwise."""
    if urlsplit(url).path.lower().endswith(".pdf"):
        return PdfTextExtractor()
    return PlainTextExtractor()


class DocumentRepository:
    """Returns document text, fetching and extracting it at most once.

    Extracted text is cached in the key-value store under `doc:<id>:text`
    together with the fingerprint of the metadata it was fetched for; a changed
    url or title invalidates the entry. Without an explicit extractor, one is
    chosen per document from its URL.
    """

    def __init__(
        self,
        store: KeyValueStore,
        fetcher: DocumentFetcher | None = None,
        extractor: TextExtractor | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher or HttpDocumentFetcher()
        self._extractor = extractor
        self._locks = KeyLocks()

    async def get_document(
        self, metadata: DocumentMetadata, recorder: MetricsRecorder
    ) -> DocumentRecord:
        cache_key = f"doc:{metadata.id}:text"
        fingerprint = document_fingerprint(metadata)

        async with self._locks(cache_key):
            cached = await self._store.get(cache_key)
            if cached and cached.get("fingerprint") == fingerprint:
                return DocumentRecord(metadata=metadata, text=cached["text"])

            logger.info("Fetching document %s from %s", metadata.id, metadata.url)
            data = await recorder.track(
                step_id("fetch-document"),
                lambda: self._fetcher.fetch(metadata.url),
                {"documentId": metadata.id, "url": metadata.url},
            )
            extractor = self._extractor or default_extractor(metadata.url)
            text = await recorder.track(
                step_id(extractor.step_name),
                lambda: extractor.extract_text(data),
                {"documentId": metadata.id},
            )

            await self._store.put(cache_key, {"fingerprint": fingerprint, "text": text})
            return DocumentRecord(metadata=metadata, text=text)
