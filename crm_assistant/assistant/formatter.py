"""
Response formatter -- turns a result set into a short plain-English answer.

Works in both ``mock`` mode (deterministic sentence, no API key needed) and
LLM mode.  Any generation failure falls back to the deterministic sentence,
so formatting never fails a request.
"""
from __future__ import annotations

import json
from typing import Any

from crm_assistant.assistant.llm_client import TextGenerator
from crm_assistant.core.logging import get_logger

logger = get_logger(__name__)

_MAX_DATA_CHARS = 20_000

_FORMAT_PROMPT = """\
You are a helpful assistant analyzing CRM data.

User asked: "{question}"

Query performed: {explanation}

Data returned: {data}

Generate a concise, helpful response in plain English. Include:
1. Direct answer to the question
2. Key numbers/statistics
3. Brief insights if relevant

Keep it under 4 sentences."""


def fallback_response(data: Any) -> str:
    """Deterministic answer reporting only the size of the result."""
    if not data:
        return "No results found."
    if isinstance(data, list):
        return f"Found {len(data)} result(s)."
    return "Query completed successfully."


def _serialise(data: Any) -> str:
    text = json.dumps(data, indent=2, default=str)
    if len(text) > _MAX_DATA_CHARS:
        text = text[:_MAX_DATA_CHARS] + "\n... (truncated)"
    return text


class ResponseFormatter:
    def __init__(self, llm: TextGenerator):
        self.llm = llm

    async def format(self, question: str, data: Any, explanation: str) -> str:
        if self.llm.is_mock or not self.llm.available:
            return fallback_response(data)

        prompt = _FORMAT_PROMPT.format(
            question=question,
            explanation=explanation or "n/a",
            data=_serialise(data),
        )
        try:
            return (await self.llm.complete(prompt, max_tokens=400)).strip() or fallback_response(data)
        except Exception as exc:
            logger.warning("Response formatting failed, using fallback: %s", exc)
            return fallback_response(data)
