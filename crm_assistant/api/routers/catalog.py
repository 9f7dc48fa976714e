"""
GET /examples, GET /status, GET /schema -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from crm_assistant.api.dependencies import get_assistant
from crm_assistant.assistant.service import AnalyticsAssistant
from crm_assistant.schema.loader import load_crm_schema

router = APIRouter()


EXAMPLE_QUESTIONS = [
    # Leaderboards
    "Who made the most bookings this week?",
    "Who made the most bookings this month?",
    "Who made the most bookings today?",
    "Who has the most revenue this week?",
    "Who has the most revenue this month?",
    "Who is the top booker?",
    "Who is the best performer this week?",
    "Which booker made the most money?",
    # Reports
    "Show me the comprehensive report for this week",
    "Give me a daily breakdown of bookings",
    "Show me the monthly breakdown",
    "What sales came from my bookings?",
    # Daily activity
    "Show me today's analytics",
    "What's the hourly activity for today?",
    "Show me team performance today",
    # Calendar
    "Show me the calendar for this week",
    "What appointments are scheduled for tomorrow?",
    # KPIs
    "What's our booking rate this week?",
    "What's the show up rate?",
    "What's our sales conversion rate?",
    # Direct queries
    "How many bookings did Chicko make on Friday?",
    "How many bookings were made this week?",
    "What's our total revenue this month?",
    "What's the average sale value this week?",
]


class StatusResponse(BaseModel):
    available: bool
    message: str


class ColumnItem(BaseModel):
    name: str
    type: str
    description: str
    values: list[str]


class TableItem(BaseModel):
    name: str
    description: str
    columns: list[ColumnItem]


class SchemaResponse(BaseModel):
    tables: list[TableItem]
    lookups: list[str]
    max_rows: int


@router.get("/examples")
def list_examples() -> dict:
    """Return sample questions covering every strategy."""
    return {"examples": EXAMPLE_QUESTIONS}


@router.get("/status", response_model=StatusResponse)
def status(assistant: AnalyticsAssistant = Depends(get_assistant)) -> StatusResponse:
    """Report whether the text-generation service is configured."""
    available = assistant.available
    return StatusResponse(
        available=available,
        message="AI Assistant is ready" if available
        else "AI Assistant requires LLM_PROVIDER and API key configuration",
    )


@router.get("/schema", response_model=SchemaResponse)
def schema() -> SchemaResponse:
    """Return the tables and visible columns the query generator may use."""
    crm = load_crm_schema()
    return SchemaResponse(
        tables=[
            TableItem(
                name=t.name,
                description=t.description,
                columns=[
                    ColumnItem(name=c.name, type=c.type, description=c.description, values=c.values)
                    for c in t.columns.values()
                    if not crm.is_blocked(c.name)
                ],
            )
            for t in crm.tables.values()
        ],
        lookups=sorted(crm.lookups),
        max_rows=crm.security.max_rows,
    )
