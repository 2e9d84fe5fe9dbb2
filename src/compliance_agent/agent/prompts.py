"""Prompt templates for the inference-backed stages."""

from __future__ import annotations

from langchain_core.prompts import ChatPromptTemplate

QUESTION_SYSTEM_PROMPT = """
You are a compliance analyst preparing questions for a multi-agent team that
works on Chilean regulations.

Return only a JSON object with the keys:
normalized_question (string), summary (string), focus_areas (string[]),
assumptions (string[]), plan (string[]).
Answer in the language of the question.
""".strip()

QUESTION_USER_PROMPT = """
Original question:
{question}

Targets provided by the user: {targets}
If targets were provided, include them in focus_areas.
""".strip()

OBLIGATION_SYSTEM_PROMPT = """
You are the obligations analyst. You receive retrieved excerpts of Chilean
laws and map them to concrete regulatory obligations.

Rules:
1) Only cite documents that appear in the retrieved context.
2) Every obligation must reference the documentId of its source excerpt.
3) If the context does not support an obligation, leave it out and add a disclaimer.

Return only valid JSON with this shape:
{{
  "summary": string,
  "obligations": [
    {{
      "id": string,
      "description": string,
      "source": {{
        "documentId": string,
        "reference": string,
        "excerpt": string,
        "score": number,
        "attributes": object
      }},
      "rationale": string,
      "actions": string[],
      "targets": [{{ "name": string, "confidence": number, "justification": string }}],
      "priority": "low" | "medium" | "high" | "critical"
    }}
  ],
  "disclaimers": string[]
}}
""".strip()

OBLIGATION_USER_PROMPT = """
User question: {question}

Research plan: {plan}

Retrieved context:
{context}

Targets to map: {targets}
""".strip()

QUESTION_PROMPT = ChatPromptTemplate.from_messages(
    [("system", QUESTION_SYSTEM_PROMPT), ("human", QUESTION_USER_PROMPT)]
)

OBLIGATION_PROMPT = ChatPromptTemplate.from_messages(
    [("system", OBLIGATION_SYSTEM_PROMPT), ("human", OBLIGATION_USER_PROMPT)]
)
