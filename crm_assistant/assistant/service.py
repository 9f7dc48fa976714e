"""
Assistant service -- orchestrates classify -> execute strategy -> format.

The question is classified into an ordered list of candidate strategies
(leaderboard, delegated endpoint, KPI, generic descriptor).  Candidates are
tried in order; when a non-final one raises, the failure is logged and the
next candidate runs.  The generic strategy is always last and its errors
propagate to the caller.

One ``now`` snapshot is taken per request and shared by every window the
strategies resolve.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from crm_assistant.assistant.classifier import (
    EndpointStrategy,
    GenericStrategy,
    KpiStrategy,
    LeaderboardStrategy,
    Strategy,
    candidates,
)
from crm_assistant.assistant.endpoints import CrmEndpointClient, build_params
from crm_assistant.assistant.executor import QueryExecutor
from crm_assistant.assistant.formatter import ResponseFormatter
from crm_assistant.assistant.generator import QueryStructureGenerator
from crm_assistant.assistant.kpi import KpiEngine
from crm_assistant.assistant.leaderboard import LeaderboardEngine
from crm_assistant.assistant.llm_client import TextGenerator
from crm_assistant.assistant.timewindow import current_time, resolve_window
from crm_assistant.core.config import Settings
from crm_assistant.core.errors import ServiceUnavailable, UnknownStrategyError, ValidationError
from crm_assistant.core.logging import get_logger
from crm_assistant.core.utils import timer
from crm_assistant.db.store import RecordStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    question: str
    now: datetime
    auth_token: str | None = None


@dataclass
class StrategyOutcome:
    data: Any
    explanation: str
    query_structure: dict[str, Any] | None = None
    endpoint: str | None = None


@dataclass
class AssistantAnswer:
    question: str
    response: str
    data: Any
    query_type: str
    query_structure: dict[str, Any] | None = None
    endpoint: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "question": self.question,
            "response": self.response,
            "data": self.data,
            "queryType": self.query_type,
            "timestamp": self.timestamp,
        }
        if self.query_structure is not None:
            body["queryStructure"] = self.query_structure
        if self.endpoint is not None:
            body["endpoint"] = self.endpoint
        return body


class AnalyticsAssistant:
    """Answers free-text analytics questions about leads and sales."""

    def __init__(
        self,
        store: RecordStore,
        llm: TextGenerator,
        endpoints: CrmEndpointClient,
        *,
        tz_name: str = "UTC",
        leaderboard_concurrency: int = 8,
        leaderboard_size: int = 10,
        kpi_default_days: int = 7,
    ):
        self.store = store
        self.llm = llm
        self.endpoints = endpoints
        self.tz_name = tz_name

        self.executor = QueryExecutor(store)
        self.leaderboards = LeaderboardEngine(store, leaderboard_concurrency, leaderboard_size)
        self.kpis = KpiEngine(store, kpi_default_days)
        self.generator = QueryStructureGenerator(llm, store.schema)
        self.formatter = ResponseFormatter(llm)

        self._handlers: dict[type, Callable[[Any, RequestContext], Awaitable[StrategyOutcome]]] = {
            LeaderboardStrategy: self._run_leaderboard,
            EndpointStrategy: self._run_endpoint,
            KpiStrategy: self._run_kpi,
            GenericStrategy: self._run_generic,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RecordStore,
        llm: TextGenerator,
        endpoints: CrmEndpointClient,
    ) -> AnalyticsAssistant:
        return cls(
            store,
            llm,
            endpoints,
            tz_name=settings.timezone,
            leaderboard_concurrency=settings.leaderboard_concurrency,
            leaderboard_size=settings.leaderboard_size,
            kpi_default_days=settings.kpi_default_days,
        )

    @property
    def available(self) -> bool:
        return self.llm.available

    # ── Public API ──────────────────────────────────────

    async def answer(
        self,
        question: Any,
        auth_token: str | None = None,
        now: datetime | None = None,
    ) -> AssistantAnswer:
        """End-to-end: question -> strategy -> data -> natural-language answer.

        Raises
        ------
        ValidationError
            *question* is missing, not a string, or blank.
        ServiceUnavailable
            The text-generation service is not configured.
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Question is required")
        if not self.available:
            raise ServiceUnavailable(
                "AI service is not configured. Please set LLM_PROVIDER and its API key."
            )

        ctx = RequestContext(question=question, now=now or current_time(self.tz_name),
                             auth_token=auth_token)
        strategies = candidates(question)
        logger.info("Assistant.answer | question=%s | candidates=%s",
                    question, [s.query_type for s in strategies])

        with timer() as t:
            strategy, outcome = await self._dispatch(strategies, ctx)
            response = await self.formatter.format(question, outcome.data, outcome.explanation)

        logger.info("Assistant.answer | queryType=%s | %dms", strategy.query_type, t["elapsed_ms"])
        return AssistantAnswer(
            question=question,
            response=response,
            data=outcome.data,
            query_type=strategy.query_type,
            query_structure=outcome.query_structure,
            endpoint=outcome.endpoint,
        )

    # ── Dispatch ────────────────────────────────────────

    async def _dispatch(
        self, strategies: list[Strategy], ctx: RequestContext
    ) -> tuple[Strategy, StrategyOutcome]:
        *fallible, final = strategies
        for strategy in fallible:
            try:
                return strategy, await self._execute(strategy, ctx)
            except Exception:
                logger.exception("%s strategy failed -- falling through", strategy.query_type)
        return final, await self._execute(final, ctx)

    async def _execute(self, strategy: Strategy, ctx: RequestContext) -> StrategyOutcome:
        handler = self._handlers.get(type(strategy))
        if handler is None:
            raise UnknownStrategyError(f"No handler for strategy {type(strategy).__name__}")
        return await handler(strategy, ctx)

    # ── Strategy handlers ───────────────────────────────

    async def _run_leaderboard(self, strategy: LeaderboardStrategy, ctx: RequestContext) -> StrategyOutcome:
        board = await self.leaderboards.compute(strategy.metric, strategy.timeframe, ctx.now)
        return StrategyOutcome(
            data=board.to_data(),
            explanation=f"Leaderboard for {strategy.metric.value} in {strategy.timeframe.value}",
        )

    async def _run_endpoint(self, strategy: EndpointStrategy, ctx: RequestContext) -> StrategyOutcome:
        endpoint = strategy.endpoint
        data = await self.endpoints.call(endpoint, build_params(endpoint, ctx.now), ctx.auth_token)
        return StrategyOutcome(
            data=data,
            explanation=f"Fetched data from {endpoint.name} endpoint",
            endpoint=endpoint.name,
        )

    async def _run_kpi(self, strategy: KpiStrategy, ctx: RequestContext) -> StrategyOutcome:
        window = resolve_window(strategy.timeframe, ctx.now) if strategy.timeframe else None
        result = await self.kpis.compute(strategy.metric, ctx.now, window)
        return StrategyOutcome(data=result.to_data(), explanation=f"Calculated {result.metric}")

    async def _run_generic(self, strategy: GenericStrategy, ctx: RequestContext) -> StrategyOutcome:
        descriptor = await self.generator.generate(ctx.question, ctx.now)
        rows = await self.executor.execute(descriptor)
        logger.info("Query returned %d result(s)", len(rows))
        return StrategyOutcome(
            data=rows,
            explanation=descriptor.explanation,
            query_structure=descriptor.model_dump(mode="json"),
        )
