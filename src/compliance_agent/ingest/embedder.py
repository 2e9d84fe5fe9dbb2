"""Embedding abstractions, a LangChain adapter and a deterministic baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from compliance_agent.errors import EmbeddingError


class Embedder(ABC):
    """Embedder interface used by the section index and the retriever."""

    model: str = "unknown"

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class LangChainEmbedder(Embedder):
    """Adapts any LangChain `Embeddings` implementation (e.g. OpenAIEmbeddings)."""

    def __init__(self, embeddings: Embeddings, *, model: str | None = None) -> None:
        self._embeddings = embeddings
        self.model = model or str(getattr(embeddings, "model", embeddings.__class__.__name__))

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        vectors = await self._embeddings.aembed_documents(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, received {len(vectors)}"
            )
        return [_require_vector(vector) for vector in vectors]

    async def embed_query(self, text: str) -> list[float]:
        return _require_vector(await self._embeddings.aembed_query(text))


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs without an embedding provider and for tests.
    """

    model = "hashing"

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def _require_vector(vector: object) -> list[float]:
    if not isinstance(vector, list) or not vector:
        raise EmbeddingError("Empty embedding returned by provider")
    return [float(value) for value in vector]
