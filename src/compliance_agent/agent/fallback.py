"""Offline inference used when no chat model provider is configured."""

from __future__ import annotations

from langchain_core.messages import BaseMessage

from compliance_agent.agent.inference import InferenceClient, response_text


class OfflineInference(InferenceClient):
    """Echoes the last message back instead of calling a model.

    The echoed prompt is not JSON, so every stage takes its degraded path:
    the raw question is used verbatim and the answer carries disclaimers.
    This keeps local environments without `COMPLIANCE_OPENAI_API_KEY` usable
    end to end.
    """

    async def run(self, model: str, messages: list[BaseMessage]) -> str:
        del model  # no model is contacted.
        if not messages:
            return ""
        return response_text(messages[-1])
