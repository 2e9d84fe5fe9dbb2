"""Cosine-similarity ranking of embedded chunks."""

from __future__ import annotations

from collections.abc import Iterable
from math import isfinite, sqrt

from compliance_agent.types import DocumentChunk, RankedChunk

EPSILON = 1e-9


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """`dot(a, b) / (|a| * |b| + EPSILON)`; 0.0 for empty, zero-norm or mismatched vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    return numerator / (norm_a * norm_b + EPSILON)


def rank_chunks(
    query_embedding: list[float],
    chunks: Iterable[DocumentChunk],
    *,
    top_k: int | None = None,
    score_threshold: float | None = None,
) -> list[RankedChunk]:
    """Score every chunk against the query and return them best-first.

    Non-finite scores are discarded. Ties keep their input order.
    """
    scored: list[RankedChunk] = []
    for chunk in chunks:
        score = cosine_similarity(query_embedding, chunk.embedding)
        if not isfinite(score):
            continue
        if score_threshold is not None and score < score_threshold:
            continue
        scored.append(RankedChunk(chunk=chunk, score=score))

    ranked = sorted(scored, key=lambda item: item.score, reverse=True)
    if top_k is not None:
        ranked = ranked[:top_k]
    return [
        RankedChunk(chunk=item.chunk, score=item.score, rank=i + 1)
        for i, item in enumerate(ranked)
    ]
