"""
Integration tests -- leaderboard engine.
"""
from __future__ import annotations

import asyncio

import pytest

from conftest import CHICKO, NOW, SARAH, TOM
from crm_assistant.assistant.leaderboard import LeaderboardEngine, LeaderboardMetric
from crm_assistant.assistant.timewindow import Timeframe
from crm_assistant.core.errors import QueryExecutionError


def compute(store, metric, timeframe, **kwargs):
    return asyncio.run(LeaderboardEngine(store, **kwargs).compute(metric, timeframe, NOW))


def test_most_bookings_this_week(store):
    board = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK)
    assert board.metric == "Most Bookings"
    assert board.timeframe == "week"
    assert board.start_date == "2025-10-12"
    assert board.end_date == "2025-10-15"
    top = board.leaderboard[0]
    assert top.entity_id == CHICKO
    assert top.bookings_made == 3
    assert top.sales_made == 1
    assert top.total_revenue == 1000.0
    assert top.conversion_rate == 33


def test_closers_are_not_ranked(store):
    board = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK)
    assert {e.role for e in board.leaderboard} <= {"booker", "admin"}
    assert len(board.leaderboard) == 4


def test_most_revenue_this_week(store):
    board = compute(store, LeaderboardMetric.MOST_REVENUE, Timeframe.WEEK)
    assert board.metric == "Most Revenue"
    assert [e.entity_id for e in board.leaderboard[:2]] == [SARAH, CHICKO]
    assert board.leaderboard[0].average_sale == 2500.0


def test_month_window_includes_earlier_bookings(store):
    board = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.MONTH)
    counts = {e.entity_id: e.bookings_made for e in board.leaderboard}
    assert counts[TOM] == 1
    assert counts[CHICKO] == 3  # the September booking is outside the month


def test_today_window(store):
    board = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.TODAY)
    assert board.start_date == board.end_date == "2025-10-15"
    assert board.leaderboard[0].bookings_made == 1


def test_sorted_non_increasing(store):
    for metric in LeaderboardMetric:
        board = compute(store, metric, Timeframe.MONTH)
        key = "bookings_made" if metric is LeaderboardMetric.MOST_BOOKINGS else "total_revenue"
        values = [getattr(e, key) for e in board.leaderboard]
        assert values == sorted(values, reverse=True)


def test_size_limit(store):
    board = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK, size=2)
    assert len(board.leaderboard) == 2


def test_concurrency_of_one_gives_same_result(store):
    serial = compute(store, LeaderboardMetric.MOST_REVENUE, Timeframe.MONTH, concurrency=1)
    parallel = compute(store, LeaderboardMetric.MOST_REVENUE, Timeframe.MONTH, concurrency=8)
    assert serial == parallel


def test_empty_store(empty_store):
    board = compute(empty_store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK)
    assert board.leaderboard == []


def test_to_data_uses_camel_case(store):
    data = compute(store, LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK).to_data()
    assert {"metric", "timeframe", "startDate", "endDate", "leaderboard"} == set(data)
    assert "bookingsMade" in data["leaderboard"][0]
    assert "totalRevenue" in data["leaderboard"][0]


# ── Failure handling ─────────────────────────────────────

class SlowBookingsStore:
    """Store wrapper whose bookings fetch fails for one booker and is slow for the rest."""

    def __init__(self, store, failing_id):
        self._store = store
        self.schema = store.schema
        self.failing_id = failing_id
        self.finished = 0

    async def fetch(self, table, columns=None, filters=(), order=None, limit=None):
        filters = list(filters)
        if table == "leads":
            booker = next((f.value for f in filters if f.column == "booker_id"), None)
            if booker == self.failing_id:
                raise QueryExecutionError("Database query failed: connection lost")
            await asyncio.sleep(0.2)
            self.finished += 1
        return await self._store.fetch(table, columns, filters, order, limit)

    async def count(self, table, filters=()):
        return await self._store.count(table, filters)


def test_failure_cancels_other_users(store):
    slow = SlowBookingsStore(store, CHICKO)

    async def go():
        with pytest.raises(QueryExecutionError, match="connection lost"):
            await LeaderboardEngine(slow).compute(
                LeaderboardMetric.MOST_BOOKINGS, Timeframe.WEEK, NOW)
        await asyncio.sleep(0.5)

    asyncio.run(go())
    assert slow.finished == 0
