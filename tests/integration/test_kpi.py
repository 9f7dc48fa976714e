"""
Integration tests -- KPI engine ratios over the fixture snapshot.
"""
from __future__ import annotations

import asyncio
import re

import pytest

from conftest import NOW
from crm_assistant.assistant.kpi import KpiEngine, KpiMetric, percent
from crm_assistant.assistant.timewindow import Timeframe, resolve_window
from crm_assistant.core.errors import QueryExecutionError


def compute(store, metric, window=None):
    return asyncio.run(KpiEngine(store).compute(metric, NOW, window))


# ── percent ──────────────────────────────────────────────

@pytest.mark.parametrize("num, den, expected", [
    (0, 0, 0),
    (5, 0, 0),
    (1, 3, 33),
    (2, 3, 67),
    (1, 2, 50),
    (1, 8, 13),  # 12.5 rounds half-up
    (3, 3, 100),
])
def test_percent(num, den, expected):
    assert percent(num, den) == expected


def test_percent_is_clamped():
    assert percent(7, 5) == 100


# ── engine ───────────────────────────────────────────────

def test_booking_rate_default_window(store):
    result = compute(store, KpiMetric.BOOKING_RATE)
    assert result.metric == "Booking Rate"
    assert result.numerator == 5
    assert result.denominator == 6
    assert result.value == "83%"
    assert result.start_date == "2025-10-08"
    assert result.end_date == "2025-10-15"


def test_booking_rate_this_week(store):
    result = compute(store, KpiMetric.BOOKING_RATE, resolve_window(Timeframe.WEEK, NOW))
    assert (result.numerator, result.denominator, result.value) == (4, 5, "80%")


def test_show_up_rate(store):
    result = compute(store, KpiMetric.SHOW_UP_RATE)
    assert result.metric == "Show Up Rate"
    assert (result.numerator, result.denominator, result.value) == (3, 5, "60%")


def test_sales_conversion_rate(store):
    result = compute(store, "sales_conversion_rate")
    assert result.metric == "Sales Conversion Rate"
    assert (result.numerator, result.denominator, result.value) == (2, 3, "67%")


def test_zero_denominator(empty_store):
    for metric in KpiMetric:
        result = compute(empty_store, metric)
        assert result.value == "0%"
        assert result.denominator == 0


def test_numerator_never_exceeds_denominator(store):
    for metric in KpiMetric:
        for tf in Timeframe:
            result = compute(store, metric, resolve_window(tf, NOW))
            assert 0 <= result.numerator <= result.denominator
            assert re.fullmatch(r"\d+%", result.value)


def test_to_data_labels(store):
    data = compute(store, KpiMetric.BOOKING_RATE).to_data()
    assert data["booked"] == 5
    assert data["assigned"] == 6
    assert data["startDate"] == "2025-10-08"
    assert "numeratorLabel" not in data


class BrokenCountStore:
    async def count(self, table, filters=()):
        raise QueryExecutionError("Database query failed: connection lost")


def test_count_failure_surfaces_store_error():
    with pytest.raises(QueryExecutionError, match="connection lost"):
        asyncio.run(KpiEngine(BrokenCountStore()).compute(KpiMetric.BOOKING_RATE, NOW))
