"""
Leaderboard engine -- ranks bookers by bookings made or revenue in a window.

For each candidate user (role booker or admin) the engine fetches the leads
they booked inside the window, then the sales linked to those leads, and
derives the entry's counters.  Users are independent, so the per-user work
runs concurrently, capped by a semaphore.  Entries are collected in the
order users were fetched and stable-sorted once all have completed.  The first failing user cancels
the work still running for the others.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from crm_assistant.assistant.descriptor import Filter, FilterOperator
from crm_assistant.assistant.kpi import percent
from crm_assistant.assistant.timewindow import Timeframe, TimeWindow, resolve_window
from crm_assistant.core.logging import get_logger
from crm_assistant.db.store import RecordStore

logger = get_logger(__name__)

CANDIDATE_ROLES = ["booker", "admin"]


class LeaderboardMetric(str, Enum):
    MOST_BOOKINGS = "most_bookings"
    MOST_REVENUE = "most_revenue"

    @property
    def label(self) -> str:
        return "Most Bookings" if self is LeaderboardMetric.MOST_BOOKINGS else "Most Revenue"


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entity_id: str
    name: str | None = None
    email: str | None = None
    role: str | None = None
    bookings_made: int = 0
    sales_made: int = 0
    total_revenue: float = 0.0
    average_sale: float = 0.0
    conversion_rate: int = 0


class Leaderboard(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    metric: str
    timeframe: str
    start_date: str
    end_date: str
    leaderboard: list[LeaderboardEntry]

    def to_data(self) -> dict:
        return self.model_dump(by_alias=True)


def _amount(sale: dict[str, Any]) -> float:
    try:
        return float(sale.get("amount") or 0)
    except (TypeError, ValueError):
        return 0.0


class LeaderboardEngine:
    def __init__(self, store: RecordStore, concurrency: int = 8, size: int = 10):
        self.store = store
        self.concurrency = max(1, concurrency)
        self.size = size

    async def compute(
        self,
        metric: LeaderboardMetric | str,
        timeframe: Timeframe | str,
        now: datetime,
    ) -> Leaderboard:
        metric = LeaderboardMetric(metric)
        timeframe = Timeframe(timeframe)
        window = resolve_window(timeframe, now)

        users = await self.store.fetch(
            "users",
            ["id", "name", "email", "role"],
            [Filter(column="role", operator=FilterOperator.IN, value=CANDIDATE_ROLES)],
        )
        logger.info("Leaderboard %s/%s | %d candidates | concurrency=%d",
                    metric.value, timeframe.value, len(users), self.concurrency)

        sem = asyncio.Semaphore(self.concurrency)

        async def bounded(user: dict[str, Any]) -> LeaderboardEntry:
            async with sem:
                return await self._entry(user, window)

        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(bounded(u)) for u in users]
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None
        entries = [t.result() for t in tasks]

        if metric is LeaderboardMetric.MOST_BOOKINGS:
            entries.sort(key=lambda e: e.bookings_made, reverse=True)
        else:
            entries.sort(key=lambda e: e.total_revenue, reverse=True)

        return Leaderboard(
            metric=metric.label,
            timeframe=timeframe.value,
            start_date=window.start_date,
            end_date=window.end_date,
            leaderboard=entries[: self.size],
        )

    async def _entry(self, user: dict[str, Any], window: TimeWindow) -> LeaderboardEntry:
        bookings = await self.store.fetch(
            "leads",
            ["id"],
            [
                Filter(column="booker_id", operator=FilterOperator.EQ, value=user["id"]),
                Filter(column="booked_at", operator=FilterOperator.GTE, value=window.start),
                Filter(column="booked_at", operator=FilterOperator.LTE, value=window.end),
            ],
        )

        sales: list[dict[str, Any]] = []
        if bookings:
            sales = await self.store.fetch(
                "sales",
                ["id", "amount"],
                [Filter(column="lead_id", operator=FilterOperator.IN, value=[b["id"] for b in bookings])],
            )

        revenue = sum(_amount(s) for s in sales)
        return LeaderboardEntry(
            entity_id=str(user["id"]),
            name=user.get("name"),
            email=user.get("email"),
            role=user.get("role"),
            bookings_made=len(bookings),
            sales_made=len(sales),
            total_revenue=revenue,
            average_sale=revenue / len(sales) if sales else 0.0,
            conversion_rate=percent(len(sales), len(bookings)),
        )
