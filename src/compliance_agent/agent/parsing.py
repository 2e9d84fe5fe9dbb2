"""Lenient JSON extraction from model output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_json_object(raw: str) -> dict[str, Any]:
    """Decode the JSON object in `raw`.

    Accepts a bare object, one wrapped in a Markdown code fence, or one
    surrounded by prose. Raises `ValueError` (including
    `json.JSONDecodeError`) when no object can be decoded.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE.sub("", text).strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT.search(text)
        if match is None:
            raise
        parsed = json.loads(match.group(0))

    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed
