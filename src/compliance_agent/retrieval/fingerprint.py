"""Deterministic fingerprints over document-set descriptions."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import asdict

from compliance_agent.types import DocumentMetadata


def canonical_description(documents: Iterable[DocumentMetadata]) -> str:
    """Serialize documents in order with sorted keys and no whitespace."""
    return json.dumps(
        [asdict(document) for document in documents],
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )


def compute_fingerprint(documents: Iterable[DocumentMetadata]) -> str:
    """SHA-256 hex digest of the canonical document-set description."""
    payload = canonical_description(documents).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def document_fingerprint(document: DocumentMetadata) -> str:
    return compute_fingerprint([document])
