"""Inference capability consumed by the stage agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from compliance_agent.errors import InferenceResponseError


class InferenceClient(ABC):
    """Runs a chat model and returns its raw text response.

    Responses are treated as untyped text; callers parse and validate locally.
    """

    @abstractmethod
    async def run(self, model: str, messages: list[BaseMessage]) -> str:
        """Send `messages` to `model` and return the response text."""


class LangChainInference(InferenceClient):
    """Backed by LangChain chat models, one instance per model id."""

    def __init__(self, model_factory: Callable[[str], BaseChatModel]) -> None:
        self._model_factory = model_factory
        self._models: dict[str, BaseChatModel] = {}

    async def run(self, model: str, messages: list[BaseMessage]) -> str:
        chat_model = self._models.get(model)
        if chat_model is None:
            chat_model = self._model_factory(model)
            self._models[model] = chat_model
        response = await chat_model.ainvoke(messages)
        return response_text(response)


def response_text(response: Any) -> str:
    """Extract plain text from a chat response, dict payload or string."""
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        for key in ("response", "result", "content", "output"):
            value = response.get(key)
            if isinstance(value, str):
                return value
        raise InferenceResponseError("Model response does not contain text")

    content = getattr(response, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    raise InferenceResponseError("Model response does not contain text")
