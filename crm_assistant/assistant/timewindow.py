"""
Time-window resolution.

Symbolic timeframes are resolved against a single "now" snapshot taken once
per request, so every sub-query of a leaderboard or KPI computation shares
the same window end.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo


class Timeframe(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def start_date(self) -> str:
        return self.start.date().isoformat()

    @property
    def end_date(self) -> str:
        return self.end.date().isoformat()


def current_time(tz_name: str = "UTC") -> datetime:
    """Timezone-aware "now" in *tz_name*."""
    tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    return datetime.now(tz)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Most recent Sunday 00:00 (today when today is Sunday)."""
    days_since_sunday = (now.weekday() + 1) % 7
    return _midnight(now) - timedelta(days=days_since_sunday)


def resolve_window(timeframe: Timeframe | str, now: datetime) -> TimeWindow:
    """Convert *timeframe* into [start, now]."""
    tf = Timeframe(timeframe)
    if tf is Timeframe.TODAY:
        start = _midnight(now)
    elif tf is Timeframe.WEEK:
        start = week_start(now)
    else:
        start = _midnight(now).replace(day=1)
    return TimeWindow(start=start, end=now)


def trailing_window(now: datetime, days: int) -> TimeWindow:
    """The *days* immediately before *now*."""
    return TimeWindow(start=now - timedelta(days=days), end=now)
