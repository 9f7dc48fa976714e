"""
Delegated CRM read endpoints.

Some questions are answered best by an existing report endpoint of the CRM
rather than by a generated query.  The registry below is fixed; each entry
declares which date parameters it needs.  Calls forward the bearer token of
the inbound request.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import httpx

from crm_assistant.core.errors import DelegatedEndpointError
from crm_assistant.core.logging import get_logger

logger = get_logger(__name__)


class DateNeeds(str, Enum):
    NONE = "none"
    DATE = "date"
    DATE_RANGE = "date_range"


@dataclass(frozen=True)
class DelegatedEndpoint:
    name: str
    path: str
    description: str
    needs: DateNeeds = DateNeeds.NONE
    params: tuple[str, ...] = field(default_factory=tuple)
    method: str = "GET"


_RANGE_PARAMS = ("startDate", "endDate", "userId")

ENDPOINTS: dict[str, DelegatedEndpoint] = {
    e.name: e
    for e in (
        # Reports & analytics
        DelegatedEndpoint("comprehensiveReport", "/api/stats/comprehensive-report",
                          "Comprehensive KPI report with bookings, sales, revenue",
                          DateNeeds.DATE_RANGE, _RANGE_PARAMS),
        DelegatedEndpoint("dailyBreakdown", "/api/stats/daily-breakdown-report",
                          "Daily breakdown of leads, bookings, sales by day",
                          DateNeeds.DATE_RANGE, _RANGE_PARAMS),
        DelegatedEndpoint("monthlyBreakdown", "/api/stats/monthly-breakdown-report",
                          "Weekly/monthly breakdown of performance",
                          DateNeeds.DATE_RANGE, _RANGE_PARAMS),
        DelegatedEndpoint("salesFromBookings", "/api/stats/sales-from-bookings",
                          "Detailed list of sales from bookings",
                          DateNeeds.DATE_RANGE, _RANGE_PARAMS),
        # Daily analytics
        DelegatedEndpoint("dailyAnalytics", "/api/stats/daily-analytics",
                          "Daily analytics for a specific date", DateNeeds.DATE, ("date",)),
        DelegatedEndpoint("hourlyActivity", "/api/stats/hourly-activity",
                          "Hourly breakdown of activity", DateNeeds.DATE, ("date",)),
        DelegatedEndpoint("teamPerformance", "/api/stats/team-performance",
                          "Team performance metrics", DateNeeds.DATE, ("date",)),
        # Calendar & bookings
        DelegatedEndpoint("calendar", "/api/leads/calendar",
                          "Calendar bookings for a date range",
                          DateNeeds.DATE_RANGE, ("startDate", "endDate")),
        DelegatedEndpoint("calendarPublic", "/api/stats/calendar-public",
                          "Public calendar view of all bookings"),
        # Dashboard & users
        DelegatedEndpoint("dashboard", "/api/stats/dashboard", "Main dashboard stats"),
        DelegatedEndpoint("userAnalytics", "/api/stats/user-analytics",
                          "Analytics for a specific user", params=("userId", "userRole")),
    )
}


def build_params(endpoint: DelegatedEndpoint, now: datetime, range_days: int = 7) -> dict[str, str]:
    """Default query parameters: the last *range_days* days, or today."""
    today = now.date()
    if endpoint.needs is DateNeeds.DATE_RANGE:
        return {
            "startDate": (today - timedelta(days=range_days)).isoformat(),
            "endDate": today.isoformat(),
        }
    if endpoint.needs is DateNeeds.DATE:
        return {"date": today.isoformat()}
    return {}


class CrmEndpointClient:
    """httpx-backed caller for the delegated endpoint registry."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def call(
        self,
        endpoint: DelegatedEndpoint | str,
        params: dict[str, Any] | None = None,
        auth_token: str | None = None,
    ) -> Any:
        if isinstance(endpoint, str):
            if endpoint not in ENDPOINTS:
                raise DelegatedEndpointError(f"Unknown endpoint: {endpoint}")
            endpoint = ENDPOINTS[endpoint]

        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        logger.info("Calling CRM endpoint %s %s params=%s", endpoint.method, endpoint.path, params)
        try:
            resp = await self.client.request(endpoint.method, endpoint.path,
                                             params=params or {}, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("CRM endpoint %s failed: %s", endpoint.path, exc)
            raise DelegatedEndpointError(
                f"Failed to fetch data from {endpoint.path}: {exc}"
            ) from exc

    async def aclose(self) -> None:
        await self.client.aclose()
