"""
Descriptor executor -- interprets a QueryDescriptor against the record store.

Three shapes:
  count      -> exact row count, returned as ``[{"count": n}]``
  aggregate  -> the named column is fetched for every matching row and
                sum/avg/min/max is computed in memory, ``[{fn: value}]``
  projection -> rows as-is, with optional ordering and a capped limit

Ordering and limit are ignored for count and aggregate descriptors.
"""
from __future__ import annotations

from typing import Any

from crm_assistant.assistant.descriptor import QueryDescriptor
from crm_assistant.assistant.lookup import LookupResolver
from crm_assistant.core.logging import get_logger
from crm_assistant.db.store import RecordStore

logger = get_logger(__name__)


def _as_number(value: Any) -> float:
    """Numeric value of a fetched cell; null or unparsable cells count as 0."""
    if value is None or isinstance(value, bool):
        return float(value or 0)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def aggregate(function: str, values: list[Any]) -> float:
    """Compute *function* over *values* in one pass (0 for an empty list)."""
    if not values:
        return 0

    total = 0.0
    lowest = highest = _as_number(values[0])
    for raw in values:
        v = _as_number(raw)
        total += v
        if v < lowest:
            lowest = v
        if v > highest:
            highest = v

    if function == "sum":
        return total
    if function == "avg":
        return total / len(values)
    if function == "min":
        return lowest
    if function == "max":
        return highest
    raise ValueError(f"Unsupported aggregate '{function}'")


class QueryExecutor:
    def __init__(self, store: RecordStore, resolver: LookupResolver | None = None):
        self.store = store
        self.resolver = resolver or LookupResolver(store)

    @property
    def row_cap(self) -> int:
        return self.store.schema.security.max_rows

    async def execute(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        filters = await self.resolver.resolve(descriptor.filters)
        projection = descriptor.projection

        if projection.kind != "columns" and (descriptor.order or descriptor.limit):
            logger.warning("Ignoring order/limit on %s query against %s",
                           projection.result_key, descriptor.table)

        if projection.kind == "count":
            n = await self.store.count(descriptor.table, filters)
            return [{"count": n}]

        if projection.kind == "aggregate":
            rows = await self.store.fetch(descriptor.table, [projection.column], filters)
            values = [row[projection.column] for row in rows]
            value = aggregate(projection.function, values)
            logger.info("Aggregate %s(%s) over %d rows = %s",
                        projection.function, projection.column, len(values), value)
            return [{projection.function: value}]

        limit = min(descriptor.limit or self.row_cap, self.row_cap)
        return await self.store.fetch(
            descriptor.table,
            projection.columns or None,
            filters,
            order=descriptor.order,
            limit=limit,
        )
