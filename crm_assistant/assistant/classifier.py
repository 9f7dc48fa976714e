"""
Intent classifier -- picks the resolution strategies for a question.

Detectors run in fixed priority order over a normalised question:

  1. leaderboard  -- "who made the most bookings", "top booker", ...
  2. endpoint     -- phrases owned by an existing CRM report endpoint
  3. kpi          -- "booking rate", "show up rate", "conversion rate"
  4. generic      -- always matches; hands off to the query generator

``candidates`` returns every matching strategy in that order so the
dispatcher can fall through when one fails.  Classification is pure text
inspection.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Union

from crm_assistant.assistant.endpoints import ENDPOINTS, DelegatedEndpoint
from crm_assistant.assistant.kpi import KpiMetric
from crm_assistant.assistant.leaderboard import LeaderboardMetric
from crm_assistant.assistant.timewindow import Timeframe


# ── Strategies ───────────────────────────────────────────

@dataclass(frozen=True)
class LeaderboardStrategy:
    metric: LeaderboardMetric
    timeframe: Timeframe
    query_type = "leaderboard"


@dataclass(frozen=True)
class EndpointStrategy:
    endpoint: DelegatedEndpoint
    query_type = "endpoint"


@dataclass(frozen=True)
class KpiStrategy:
    metric: KpiMetric
    timeframe: Timeframe | None = None
    query_type = "kpi"


@dataclass(frozen=True)
class GenericStrategy:
    query_type = "sql"


Strategy = Union[LeaderboardStrategy, EndpointStrategy, KpiStrategy, GenericStrategy]


# ── Normalisation ────────────────────────────────────────

_NON_WORD_RE = re.compile(r"[^a-z0-9']+")


def normalize(question: str) -> str:
    """Lower-case, fold punctuation to spaces, collapse whitespace (padded with spaces)."""
    words = _NON_WORD_RE.sub(" ", question.lower()).split()
    return " " + " ".join(words) + " "


def _has(q: str, *phrases: str) -> bool:
    return any(p in q for p in phrases)


# ── Detectors ────────────────────────────────────────────

_INTERROGATIVES = (" who ", " who's ", " which ")

_BOOKING_PHRASES = ("most booking", "top booking", "best booking", "highest booking")
_REVENUE_PHRASES = ("most revenue", "most money", "most sales", "highest revenue",
                    "most spent", "biggest earner")
_PERFORMER_PHRASES = ("top performer", "best performer", "top booker", "best booker")


def _timeframe(q: str) -> Timeframe:
    if _has(q, " today"):
        return Timeframe.TODAY
    if _has(q, "month"):
        return Timeframe.MONTH
    return Timeframe.WEEK


def detect_leaderboard(q: str) -> LeaderboardStrategy | None:
    asks_who = _has(q, *_INTERROGATIVES)
    if asks_who and _has(q, *_BOOKING_PHRASES):
        return LeaderboardStrategy(LeaderboardMetric.MOST_BOOKINGS, _timeframe(q))
    if asks_who and _has(q, *_REVENUE_PHRASES):
        return LeaderboardStrategy(LeaderboardMetric.MOST_REVENUE, _timeframe(q))
    if _has(q, *_PERFORMER_PHRASES):
        return LeaderboardStrategy(LeaderboardMetric.MOST_BOOKINGS, _timeframe(q))
    return None


# (endpoint name, predicate) in priority order
_ENDPOINT_RULES: list[tuple[str, Callable[[str], bool]]] = [
    ("comprehensiveReport", lambda q: _has(q, "comprehensive", "full report")
        or (_has(q, " kpi") and _has(q, "report", "summary"))),
    ("dailyBreakdown", lambda q: _has(q, "daily breakdown", "day by day", "each day")),
    ("monthlyBreakdown", lambda q: _has(q, "weekly breakdown", "monthly breakdown", "week by week")),
    ("salesFromBookings", lambda q: _has(q, "sales from bookings", "sales came from",
                                         "sales details", "which bookings converted")),
    ("dailyAnalytics", lambda q: _has(q, "daily", " today") and _has(q, "analytic")),
    ("hourlyActivity", lambda q: _has(q, "hourly", "hour by hour")),
    ("teamPerformance", lambda q: _has(q, "team performance", "team stats")),
    ("calendar", lambda q: _has(q, "calendar", "appointments scheduled",
                                "appointments are scheduled", "bookings scheduled")),
    ("dashboard", lambda q: _has(q, "dashboard", "overview")),
]


def detect_endpoint(q: str) -> EndpointStrategy | None:
    for name, matches in _ENDPOINT_RULES:
        if matches(q):
            return EndpointStrategy(ENDPOINTS[name])
    return None


_KPI_PHRASES: list[tuple[KpiMetric, tuple[str, ...]]] = [
    (KpiMetric.BOOKING_RATE, ("booking rate", "bookings rate")),
    (KpiMetric.SHOW_UP_RATE, ("show up rate", "showup rate", "show rate", "attendance rate")),
    (KpiMetric.SALES_CONVERSION_RATE, ("sales conversion", "conversion rate")),
]


def detect_kpi(q: str) -> KpiStrategy | None:
    for metric, phrases in _KPI_PHRASES:
        if _has(q, *phrases):
            timeframe = None
            if _has(q, " today"):
                timeframe = Timeframe.TODAY
            elif _has(q, "this week"):
                timeframe = Timeframe.WEEK
            elif _has(q, "this month"):
                timeframe = Timeframe.MONTH
            return KpiStrategy(metric, timeframe)
    return None


_DETECTORS: list[tuple[str, Callable[[str], Strategy | None]]] = [
    ("leaderboard", detect_leaderboard),
    ("endpoint", detect_endpoint),
    ("kpi", detect_kpi),
]


# ── Public API ───────────────────────────────────────────

def candidates(question: str) -> list[Strategy]:
    """Every strategy that matches *question*, in priority order, ending with generic."""
    q = normalize(question)
    found: list[Strategy] = []
    for _name, detect in _DETECTORS:
        strategy = detect(q)
        if strategy is not None:
            found.append(strategy)
    found.append(GenericStrategy())
    return found


def classify(question: str) -> Strategy:
    """The highest-priority strategy for *question*."""
    return candidates(question)[0]
