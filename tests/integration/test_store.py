"""
Integration tests -- record store against a temporary SQLite database.
"""
from __future__ import annotations

import asyncio

import pytest

from conftest import CHICKO, NOW, ts
from crm_assistant.assistant.descriptor import Filter, FilterOperator, Order
from crm_assistant.assistant.timewindow import week_start
from crm_assistant.core.errors import QueryExecutionError


def f(column, operator, value=None):
    return Filter(column=column, operator=FilterOperator(operator), value=value)


# ── fetch ────────────────────────────────────────────────

def test_fetch_all_visible_columns(store):
    rows = asyncio.run(store.fetch("users"))
    assert len(rows) == 5
    assert "password_hash" not in rows[0]
    assert {"id", "name", "email", "role"} <= set(rows[0])


def test_fetch_selected_columns(store):
    rows = asyncio.run(store.fetch("users", ["name"], [f("role", "eq", "closer")]))
    assert rows == [{"name": "Carl"}]


def test_uuid_round_trips_as_string(store):
    rows = asyncio.run(store.fetch("users", ["id"], [f("name", "eq", "Chicko")]))
    assert rows == [{"id": CHICKO}]


def test_eq_none_is_null(store):
    rows = asyncio.run(store.fetch("leads", ["id"], [f("booked_at", "eq", None)]))
    assert len(rows) == 2  # leads 5 and 7


def test_neq_none_is_not_null(store):
    n = asyncio.run(store.count("leads", [f("booked_at", "neq", None)]))
    assert n == 6


def test_in_operator(store):
    n = asyncio.run(store.count("leads", [f("status", "in", ["Attended", "Complete"])]))
    assert n == 4


def test_ilike_is_case_insensitive(store):
    rows = asyncio.run(store.fetch("users", ["name"], [f("name", "ilike", "%chick%")]))
    assert rows == [{"name": "Chicko"}]


def test_iso_string_filter_on_timestamp(store):
    start = week_start(NOW).isoformat()
    n = asyncio.run(store.count("leads", [f("booked_at", "gte", start)]))
    assert n == 4  # leads 1-4


def test_datetime_filter_on_timestamp(store):
    n = asyncio.run(store.count("leads", [
        f("booked_at", "gte", ts(10, 15)),
        f("booked_at", "lte", NOW),
    ]))
    assert n == 1


def test_numeric_string_filter(store):
    n = asyncio.run(store.count("sales", [f("amount", "gt", "900")]))
    assert n == 2


def test_order_and_limit(store):
    rows = asyncio.run(store.fetch(
        "sales", ["amount"], order=Order(column="amount", ascending=False), limit=2,
    ))
    assert [r["amount"] for r in rows] == [2500.0, 1000.0]


def test_timestamps_are_json_safe(store):
    rows = asyncio.run(store.fetch("sales", ["created_at"], limit=1))
    assert isinstance(rows[0]["created_at"], str)


# ── count ────────────────────────────────────────────────

def test_count_without_filters(store):
    assert asyncio.run(store.count("leads")) == 8


def test_count_on_empty_table(empty_store):
    assert asyncio.run(empty_store.count("sales")) == 0


# ── errors ───────────────────────────────────────────────

def test_unknown_table_raises(store):
    with pytest.raises(QueryExecutionError, match="unknown table"):
        asyncio.run(store.fetch("payments"))


def test_unknown_column_raises(store):
    with pytest.raises(QueryExecutionError, match="unknown column"):
        asyncio.run(store.count("leads", [f("nope", "eq", 1)]))


def test_bad_timestamp_value_raises(store):
    with pytest.raises(QueryExecutionError, match="Invalid timestamp"):
        asyncio.run(store.count("leads", [f("booked_at", "gte", "last tuesday")]))
