"""
KPI engine -- fixed ratio metrics from two correlated lead counts.

  booking_rate           booked / assigned     (base: assigned_at in window)
  show_up_rate           attended / booked     (base: booked_at in window)
  sales_conversion_rate  sold / attended       (base: booked_at in window, attended)

Both counts of a ratio share the same base filters; the numerator adds
one discriminating filter, so numerator <= denominator always holds.
"""
from __future__ import annotations

import asyncio
import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from crm_assistant.assistant.descriptor import Filter, FilterOperator
from crm_assistant.assistant.timewindow import TimeWindow, trailing_window
from crm_assistant.core.logging import get_logger
from crm_assistant.db.store import RecordStore

logger = get_logger(__name__)

ATTENDED_STATUSES = ["Attended", "Complete"]


class KpiMetric(str, Enum):
    BOOKING_RATE = "booking_rate"
    SHOW_UP_RATE = "show_up_rate"
    SALES_CONVERSION_RATE = "sales_conversion_rate"


def percent(numerator: int | float, denominator: int | float) -> int:
    """``round(numerator / denominator * 100)`` rounded half-up, clamped to [0, 100].

    A zero denominator gives 0.
    """
    if not denominator:
        return 0
    value = math.floor(numerator / denominator * 100 + 0.5)
    return max(0, min(100, value))


class KpiResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    metric: str
    value: str
    numerator: int
    denominator: int
    numerator_label: str
    denominator_label: str
    start_date: str
    end_date: str

    def to_data(self) -> dict:
        data = self.model_dump(by_alias=True, exclude={"numerator_label", "denominator_label"})
        data[self.numerator_label] = self.numerator
        data[self.denominator_label] = self.denominator
        return data


def _between(column: str, window: TimeWindow) -> list[Filter]:
    return [
        Filter(column=column, operator=FilterOperator.GTE, value=window.start),
        Filter(column=column, operator=FilterOperator.LTE, value=window.end),
    ]


# metric -> (label, base filters, discriminating filter, numerator label, denominator label)
def _definition(metric: KpiMetric, window: TimeWindow) -> tuple[str, list[Filter], Filter, str, str]:
    if metric is KpiMetric.BOOKING_RATE:
        return (
            "Booking Rate",
            _between("assigned_at", window),
            Filter(column="booked_at", operator=FilterOperator.NEQ, value=None),
            "booked",
            "assigned",
        )
    if metric is KpiMetric.SHOW_UP_RATE:
        return (
            "Show Up Rate",
            _between("booked_at", window),
            Filter(column="status", operator=FilterOperator.IN, value=ATTENDED_STATUSES),
            "attended",
            "booked",
        )
    return (
        "Sales Conversion Rate",
        _between("booked_at", window)
        + [Filter(column="status", operator=FilterOperator.IN, value=ATTENDED_STATUSES)],
        Filter(column="has_sale", operator=FilterOperator.EQ, value=1),
        "sales",
        "attended",
    )


class KpiEngine:
    def __init__(self, store: RecordStore, default_days: int = 7):
        self.store = store
        self.default_days = default_days

    async def compute(
        self,
        metric: KpiMetric | str,
        now: datetime,
        window: TimeWindow | None = None,
    ) -> KpiResult:
        metric = KpiMetric(metric)
        window = window or trailing_window(now, self.default_days)
        label, base, discriminator, num_label, den_label = _definition(metric, window)

        try:
            async with asyncio.TaskGroup() as tg:
                num_task = tg.create_task(self.store.count("leads", base + [discriminator]))
                den_task = tg.create_task(self.store.count("leads", base))
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None
        numerator, denominator = num_task.result(), den_task.result()

        rate = percent(numerator, denominator)
        logger.info("KPI %s | %d/%d = %d%% | %s..%s", metric.value, numerator, denominator,
                    rate, window.start_date, window.end_date)
        return KpiResult(
            metric=label,
            value=f"{rate}%",
            numerator=numerator,
            denominator=denominator,
            numerator_label=num_label,
            denominator_label=den_label,
            start_date=window.start_date,
            end_date=window.end_date,
        )
