"""
Query structure generator -- turns an unclassified question into a
QueryDescriptor.

Two modes:
  mock              → deterministic keyword planner (no API key needed)
  openai / anthropic → the text-generation service writes the descriptor

Whatever the mode, the descriptor is validated against the CRM schema
allow-list before it is handed to the executor.
"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from crm_assistant.assistant.descriptor import Filter, FilterOperator, QueryDescriptor
from crm_assistant.assistant.llm_client import TextGenerator
from crm_assistant.assistant.timewindow import Timeframe, resolve_window, week_start
from crm_assistant.core.errors import (
    DescriptorRejectedError,
    ServiceUnavailable,
    UpstreamGenerationError,
)
from crm_assistant.core.logging import get_logger
from crm_assistant.schema.loader import CrmSchema
from crm_assistant.schema.validator import validate_descriptor

logger = get_logger(__name__)


# ── JSON extraction ──────────────────────────────────────

def extract_json_block(text: str) -> str:
    """Return the first balanced ``{...}`` block in *text*.

    Braces inside JSON strings are ignored.  Raises UpstreamGenerationError
    when there is no complete block.
    """
    start = text.find("{")
    if start == -1:
        raise UpstreamGenerationError("AI did not return valid JSON")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    raise UpstreamGenerationError("AI returned an unterminated JSON object")


def parse_descriptor(text: str) -> QueryDescriptor:
    """Parse generated text into a QueryDescriptor."""
    block = extract_json_block(text)
    try:
        data: dict[str, Any] = json.loads(block)
    except json.JSONDecodeError as exc:
        raise UpstreamGenerationError(f"Failed to parse generated query: {exc}") from exc
    if not isinstance(data, dict):
        raise UpstreamGenerationError("Generated query is not a JSON object")
    try:
        return QueryDescriptor.model_validate(data)
    except PydanticValidationError as exc:
        raise UpstreamGenerationError(f"Generated query has an invalid structure: {exc}") from exc


# ── LLM prompt ───────────────────────────────────────────

_LLM_PROMPT = """\
You are a query generator for the CRM's PostgreSQL database.

{schema}

Current date: {today}
Start of this week (Sunday): {week_start}

User question: "{question}"

CRITICAL RULES (STRICT):
1. Describe ONLY a read-only SELECT (no INSERT, UPDATE, DELETE, DROP, etc.)
2. Return ONLY the query structure as JSON, no explanations, no markdown
3. Use only tables and columns that exist in the schema above
4. Timestamps are ISO-8601 strings
5. For "this week", use: date >= '{week_start}'
6. For "today", use: date >= '{today}T00:00:00' and date < the next day
7. NEVER count bookings by status='Booked' - ALWAYS use booked_at is not null
8. If you can't answer with the available data, say so in explanation

Return format (JSON only):
{{
  "table": "table_name",
  "select": "columns or * or count(*) or sum(column) or avg(column) or min(column) or max(column)",
  "filters": [
    {{"column": "column_name", "operator": "eq|neq|gt|gte|lt|lte|like|ilike|in", "value": "value"}}
  ],
  "order": {{"column": "column_name", "ascending": true}},
  "limit": 50,
  "explanation": "Brief explanation of what this query does"
}}

Use at most one aggregate in select.  "eq" with value null means IS NULL,
"neq" with value null means IS NOT NULL.  "in" takes a JSON list.

For people, use the lookup format "lookup:booker:<name>" (leads.booker_id) or
"lookup:user:<name>" (sales.user_id) as the value - it is replaced with the id.

Example - "How many bookings did Chicko make this week?":
{{
  "table": "leads",
  "select": "count(*)",
  "filters": [
    {{"column": "booker_id", "operator": "eq", "value": "lookup:booker:Chicko"}},
    {{"column": "booked_at", "operator": "gte", "value": "{week_start}"}}
  ],
  "explanation": "Count leads booked by Chicko since the start of this week"
}}

Example - "What's the average sale value this week?":
{{
  "table": "sales",
  "select": "avg(amount)",
  "filters": [
    {{"column": "created_at", "operator": "gte", "value": "{week_start}"}}
  ],
  "explanation": "Average sale amount for this week"
}}
"""


# ── Mock planner ─────────────────────────────────────────

_TIMEFRAME_KEYWORDS: list[tuple[Timeframe, tuple[str, ...]]] = [
    (Timeframe.TODAY, ("today",)),
    (Timeframe.WEEK, ("this week", "week")),
    (Timeframe.MONTH, ("this month", "month")),
]

_SALE_AGGREGATES: list[tuple[str, tuple[str, ...]]] = [
    ("avg", ("average", "avg", "mean")),
    ("max", ("biggest", "largest", "highest", "max")),
    ("min", ("smallest", "lowest", "min")),
    ("count", ("how many", "number of", "count")),
    ("sum", ("total", "revenue", "sum", "how much")),
]

_NOT_NAMES = {
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
    "January", "February", "March", "April", "May", "June", "July", "August",
    "September", "October", "November", "December", "Today", "This", "The",
}

_PERSON_RE = re.compile(r"\b(?:by|did|for|from)\s+([A-Z][a-zA-Z'-]+)")


def _timeframe(q: str) -> Timeframe | None:
    for tf, keywords in _TIMEFRAME_KEYWORDS:
        if any(kw in q for kw in keywords):
            return tf
    return None


def _mentions(q: str, keywords: tuple[str, ...]) -> bool:
    """Whole-word match of any keyword in *q*."""
    return any(re.search(rf"\b{re.escape(kw)}\b", q) for kw in keywords)


def _person(question: str) -> str | None:
    for m in _PERSON_RE.finditer(question):
        if m.group(1) not in _NOT_NAMES:
            return m.group(1)
    return None


def plan_mock(question: str, now: datetime) -> QueryDescriptor:
    """Deterministic keyword-based question → descriptor planner."""
    q = question.lower().strip()
    tf = _timeframe(q)
    window = resolve_window(tf, now) if tf else None
    period = f" for {'today' if tf is Timeframe.TODAY else 'this ' + tf.value}" if tf else ""
    person = _person(question)

    # 1. Sales / revenue questions
    if any(kw in q for kw in ("revenue", "sale", "sold", "earned")):
        fn = "sum"
        for name, keywords in _SALE_AGGREGATES:
            if _mentions(q, keywords):
                fn = name
                break
        filters: list[Filter] = []
        if window:
            filters.append(Filter(column="created_at", operator=FilterOperator.GTE,
                                  value=window.start.isoformat()))
        if person:
            filters.append(Filter(column="user_id", operator=FilterOperator.EQ,
                                  value=f"lookup:user:{person}"))
        select = "count(*)" if fn == "count" else f"{fn}(amount)"
        what = {"avg": "Average sale amount", "max": "Largest sale amount",
                "min": "Smallest sale amount", "count": "Number of sales",
                "sum": "Total revenue"}[fn]
        return QueryDescriptor(table="sales", select=select, filters=filters,
                               explanation=f"{what}{period}")

    # 2. Booking / lead questions
    if any(kw in q for kw in ("booking", "booked", "lead", "appointment")):
        if "appointment" in q:
            date_col, what = "date_booked", "appointments scheduled"
        elif "booking" in q or "booked" in q:
            date_col, what = "booked_at", "bookings made"
        else:
            date_col, what = ("assigned_at", "leads assigned") if "assign" in q else ("created_at", "leads created")

        filters = []
        if date_col == "booked_at":
            filters.append(Filter(column="booked_at", operator=FilterOperator.NEQ, value=None))
        if window:
            filters.append(Filter(column=date_col, operator=FilterOperator.GTE,
                                  value=window.start.isoformat()))
        if person:
            filters.append(Filter(column="booker_id", operator=FilterOperator.EQ,
                                  value=f"lookup:booker:{person}"))
        by = f" by {person}" if person else ""

        if any(kw in q for kw in ("how many", "number of", "count")):
            return QueryDescriptor(table="leads", select="count(*)", filters=filters,
                                   explanation=f"Count of {what}{by}{period}")
        return QueryDescriptor(
            table="leads",
            select=f"id, name, phone, status, {date_col}",
            filters=filters,
            order={"column": date_col, "ascending": False},
            limit=50,
            explanation=f"List of {what}{by}{period}",
        )

    raise UpstreamGenerationError(
        "Could not map the question to a query in mock mode. "
        "Configure an LLM provider for free-form questions."
    )


# ── Public API ───────────────────────────────────────────

class QueryStructureGenerator:
    def __init__(self, llm: TextGenerator, schema: CrmSchema):
        self.llm = llm
        self.schema = schema

    def build_prompt(self, question: str, now: datetime) -> str:
        return _LLM_PROMPT.format(
            schema=self.schema.describe(),
            today=now.date().isoformat(),
            week_start=week_start(now).isoformat(),
            question=question.replace('"', "'"),
        )

    async def generate(self, question: str, now: datetime) -> QueryDescriptor:
        """Produce a validated descriptor for *question*.

        Raises
        ------
        ServiceUnavailable
            The text-generation service is not configured.
        UpstreamGenerationError
            Generation failed or produced no usable JSON.
        DescriptorRejectedError
            The descriptor references something outside the schema allow-list.
        """
        if self.llm.is_mock:
            descriptor = plan_mock(question, now)
        else:
            if not self.llm.available:
                raise ServiceUnavailable("Text-generation service is not configured.")
            text = await self.llm.complete(self.build_prompt(question, now))
            descriptor = parse_descriptor(text)

        errors = validate_descriptor(descriptor, self.schema)
        if errors:
            logger.warning("Descriptor rejected: %s", errors)
            raise DescriptorRejectedError(errors)

        logger.info("Generator[%s] -> %s", self.llm.provider, descriptor.model_dump_json())
        return descriptor
