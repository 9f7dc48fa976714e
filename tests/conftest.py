"""
Shared fixtures -- a small, hand-written CRM snapshot in a temporary SQLite
database, plus the async record store that reads it.

All timestamps are anchored on NOW, a Wednesday afternoon, so "this week"
starts on Sunday 2025-10-12 and "this month" on 2025-10-01.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from crm_assistant.assistant.endpoints import CrmEndpointClient
from crm_assistant.assistant.llm_client import TextGenerator
from crm_assistant.assistant.service import AnalyticsAssistant
from crm_assistant.core.errors import UpstreamGenerationError
from crm_assistant.db.store import RecordStore
from crm_assistant.schema.loader import load_crm_schema

NOW = datetime(2025, 10, 15, 14, 30, tzinfo=timezone.utc)


def ts(month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(2025, month, day, hour, minute, tzinfo=timezone.utc)


CHICKO = "11111111-1111-4111-8111-111111111111"
SARAH = "22222222-2222-4222-8222-222222222222"
TOM = "33333333-3333-4333-8333-333333333333"
CARL = "44444444-4444-4444-8444-444444444444"
NINA = "55555555-5555-4555-8555-555555555555"


def _uuid(n: int) -> str:
    return f"00000000-0000-4000-8000-{n:012d}"


USERS = [
    {"id": CHICKO, "name": "Chicko", "email": "chicko@example.com", "role": "booker"},
    {"id": SARAH, "name": "Sarah", "email": "sarah@example.com", "role": "booker"},
    {"id": TOM, "name": "Tom", "email": "tom@example.com", "role": "admin"},
    {"id": CARL, "name": "Carl", "email": "carl@example.com", "role": "closer"},
    {"id": NINA, "name": "Nina", "email": "nina@example.com", "role": "booker"},
]


def _lead(n, booker, status, assigned=None, booked=None, has_sale=0, created=None):
    return {
        "id": _uuid(n),
        "name": f"Lead {n}",
        "phone": f"0700000000{n}",
        "email": f"lead{n}@example.com",
        "age": 30 + n,
        "postcode": "M1 1AA",
        "status": status,
        "assigned_at": assigned,
        "booked_at": booked,
        "date_booked": booked,
        "booker_id": booker,
        "has_sale": has_sale,
        "created_at": created or assigned or ts(10, 15, 8),
    }


LEADS = [
    _lead(1, CHICKO, "Attended", assigned=ts(10, 13, 9), booked=ts(10, 13, 10), has_sale=1),
    _lead(2, CHICKO, "Complete", assigned=ts(10, 13, 9), booked=ts(10, 14, 11)),
    _lead(3, CHICKO, "Booked", assigned=ts(10, 14, 9), booked=ts(10, 15, 9)),
    _lead(4, SARAH, "Attended", assigned=ts(10, 14, 10), booked=ts(10, 14, 12), has_sale=1),
    _lead(5, SARAH, "Contacted", assigned=ts(10, 14, 10)),
    _lead(6, TOM, "Cancelled", assigned=ts(10, 10, 10), booked=ts(10, 10, 12)),
    _lead(7, None, "New", created=ts(10, 15, 8)),
    _lead(8, CHICKO, "Attended", assigned=ts(9, 20, 9), booked=ts(9, 21, 10), has_sale=1),
]

SALES = [
    {"id": _uuid(101), "lead_id": _uuid(1), "user_id": CARL, "amount": 1000.0,
     "payment_type": "full_payment", "status": "completed", "created_at": ts(10, 13, 15)},
    {"id": _uuid(102), "lead_id": _uuid(4), "user_id": CARL, "amount": 2500.0,
     "payment_type": "finance", "status": "completed", "created_at": ts(10, 14, 15)},
    {"id": _uuid(103), "lead_id": _uuid(8), "user_id": CARL, "amount": 400.0,
     "payment_type": "full_payment", "status": "completed", "created_at": ts(9, 22, 12)},
]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def schema():
    return load_crm_schema()


@pytest.fixture
def db_path(tmp_path, schema):
    """SQLite file holding the fixture snapshot."""
    path = tmp_path / "crm.db"
    engine = create_engine(f"sqlite:///{path}")
    schema.metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(schema.sa_table("users").insert(), USERS)
        conn.execute(schema.sa_table("leads").insert(), LEADS)
        conn.execute(schema.sa_table("sales").insert(), SALES)
    engine.dispose()
    return path


@pytest.fixture
def empty_db_path(tmp_path, schema):
    path = tmp_path / "empty.db"
    engine = create_engine(f"sqlite:///{path}")
    schema.metadata.create_all(engine)
    engine.dispose()
    return path


def _store(path, schema) -> RecordStore:
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    return RecordStore(engine, schema)


@pytest.fixture
def store(db_path, schema):
    s = _store(db_path, schema)
    yield s
    asyncio.run(s.engine.dispose())


@pytest.fixture
def empty_store(empty_db_path, schema):
    s = _store(empty_db_path, schema)
    yield s
    asyncio.run(s.engine.dispose())


# ── Fake text generators ─────────────────────────────────

class ScriptedGenerator(TextGenerator):
    """Configured-provider stand-in that replies from a queue of canned texts."""

    def __init__(self, *responses: str):
        super().__init__(provider="openai", api_key="test-key")
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise UpstreamGenerationError("Text generation failed: no scripted response left")
        return self.responses.pop(0)


class FailingGenerator(TextGenerator):
    def __init__(self):
        super().__init__(provider="anthropic", api_key="test-key")

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        raise UpstreamGenerationError("Text generation failed: upstream 500")


def crm_transport(payload=None, status: int = 200, seen: list | None = None) -> httpx.MockTransport:
    """MockTransport standing in for the CRM's report endpoints."""
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload if payload is not None else {"ok": True})

    return httpx.MockTransport(handler)


def make_assistant(store, llm: TextGenerator | None = None,
                   transport: httpx.MockTransport | None = None) -> AnalyticsAssistant:
    endpoints = CrmEndpointClient("http://crm.test", transport=transport or crm_transport())
    return AnalyticsAssistant(store, llm or TextGenerator("mock"), endpoints)
