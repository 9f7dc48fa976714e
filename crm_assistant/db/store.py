"""
Read-only record store.

Exposes the primitives the assistant needs from the relational store:
select-with-filters, exact row count, ordering and limiting.  Aggregates are
never pushed down; callers fetch the column and aggregate in memory.

Queries are built with SQLAlchemy Core against the table metadata of the
CRM schema, so every table and column reference is checked against the
schema before SQL is emitted.  Filter values are coerced to the column
type (ISO-8601 strings to datetimes, numeric strings to numbers).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import Column, DateTime, Integer, Numeric, Table, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from crm_assistant.assistant.descriptor import Filter, FilterOperator, Order
from crm_assistant.core.errors import QueryExecutionError
from crm_assistant.core.logging import get_logger
from crm_assistant.core.utils import json_safe, timer
from crm_assistant.db.connection import readonly_connection
from crm_assistant.schema.loader import CrmSchema

logger = get_logger(__name__)

_DEFAULT_TIMEOUT_MS = 10_000

_OPERATORS: dict[FilterOperator, Callable[[Column, Any], Any]] = {
    FilterOperator.EQ: lambda c, v: c == v,
    FilterOperator.NEQ: lambda c, v: c != v,
    FilterOperator.GT: lambda c, v: c > v,
    FilterOperator.GTE: lambda c, v: c >= v,
    FilterOperator.LT: lambda c, v: c < v,
    FilterOperator.LTE: lambda c, v: c <= v,
    FilterOperator.LIKE: lambda c, v: c.like(v, escape="\\"),
    FilterOperator.ILIKE: lambda c, v: c.ilike(v, escape="\\"),
    FilterOperator.IN: lambda c, v: c.in_(v),
}

_PATTERN_OPERATORS = (FilterOperator.LIKE, FilterOperator.ILIKE)


def _parse_timestamp(value: str, column: str) -> datetime:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise QueryExecutionError(
            f"Invalid timestamp value '{value}' for column '{column}'"
        ) from exc


def _coerce(column: Column, value: Any) -> Any:
    """Convert a filter value to what the column's type binds."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [_coerce(column, v) for v in value]

    sa_type = column.type
    try:
        if isinstance(sa_type, DateTime):
            if isinstance(value, str):
                value = _parse_timestamp(value, column.name)
            if isinstance(value, datetime):
                if value.tzinfo is None:
                    return value.replace(tzinfo=timezone.utc)
                return value.astimezone(timezone.utc)
            return value
        if isinstance(sa_type, Integer) and isinstance(value, (str, bool)):
            return int(value)
        if isinstance(sa_type, Numeric) and isinstance(value, str):
            return float(value)
    except (TypeError, ValueError) as exc:
        raise QueryExecutionError(
            f"Invalid value {value!r} for column '{column.name}'"
        ) from exc
    return value


class RecordStore:
    """Async read-only access to the CRM tables."""

    def __init__(self, engine: AsyncEngine, schema: CrmSchema, timeout_ms: int = _DEFAULT_TIMEOUT_MS):
        self.engine = engine
        self.schema = schema
        self.timeout_ms = timeout_ms

    # ── Public API ──────────────────────────────────────

    async def fetch(
        self,
        table: str,
        columns: list[str] | None = None,
        filters: Iterable[Filter] = (),
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows as JSON-safe dicts.

        ``columns=None`` selects every visible (non-blocked) column.
        """
        tbl = self._table(table)
        names = columns or self.schema.visible_columns(table)
        stmt = select(*[self._column(tbl, c) for c in names])
        stmt = self._where(stmt, tbl, filters)
        if order is not None:
            col = self._column(tbl, order.column)
            stmt = stmt.order_by(col.asc() if order.ascending else col.desc())
        if limit is not None:
            stmt = stmt.limit(int(limit))

        with timer() as t:
            rows = await self._all(stmt)
        result = [
            {key: json_safe(val) for key, val in row._mapping.items()}
            for row in rows
        ]
        logger.info("Store.fetch | table=%s | rows=%d | %dms", table, len(result), t["elapsed_ms"])
        return result

    async def count(self, table: str, filters: Iterable[Filter] = ()) -> int:
        """Return the exact number of rows matching *filters*."""
        tbl = self._table(table)
        stmt = self._where(select(func.count()).select_from(tbl), tbl, filters)
        with timer() as t:
            rows = await self._all(stmt)
        n = int(rows[0][0]) if rows else 0
        logger.info("Store.count | table=%s | count=%d | %dms", table, n, t["elapsed_ms"])
        return n

    # ── Internals ───────────────────────────────────────

    def _table(self, name: str) -> Table:
        try:
            return self.schema.sa_table(name)
        except KeyError as exc:
            raise QueryExecutionError(f"Database query failed: unknown table '{name}'") from exc

    @staticmethod
    def _column(tbl: Table, name: str) -> Column:
        try:
            return tbl.c[name]
        except KeyError as exc:
            raise QueryExecutionError(
                f"Database query failed: unknown column '{name}' on '{tbl.name}'"
            ) from exc

    def _where(self, stmt, tbl: Table, filters: Iterable[Filter]):
        for f in filters:
            col = self._column(tbl, f.column)
            value = f.value if f.operator in _PATTERN_OPERATORS else _coerce(col, f.value)
            if f.operator == FilterOperator.IN and not isinstance(value, list):
                value = [value]
            stmt = stmt.where(_OPERATORS[f.operator](col, value))
        return stmt

    async def _all(self, stmt) -> list:
        try:
            async with readonly_connection(self.engine, self.timeout_ms) as conn:
                result = await conn.execute(stmt)
                return list(result.fetchall())
        except SQLAlchemyError as exc:
            logger.warning("Store query failed: %s", exc)
            raise QueryExecutionError(f"Database query failed: {exc}") from exc
