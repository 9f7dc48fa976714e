"""
QueryDescriptor -- the structured intermediate representation between a
natural-language question and a store query.

A descriptor names one table, a projection (columns, ``count`` or a single
aggregate), a list of filters, and optional ordering and limit.  Filter
values may be lookup tokens (``lookup:booker:Chicko`` or the older
``BOOKER_ID_LOOKUP:Chicko`` spelling) that are resolved to ids before the
query runs.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

AGGREGATE_FUNCTIONS = ("count", "sum", "avg", "min", "max")

_AGG_RE = re.compile(
    r"\b(count|sum|avg|min|max)\s*\(\s*(\*|[A-Za-z_]\w*)?\s*\)",
    re.IGNORECASE,
)

_LOOKUP_RE = re.compile(
    r"^(?:lookup:(?P<kind>[a-z_]+):|(?P<legacy>[a-z_]+?)_id_lookup:)(?P<name>.+)$",
    re.IGNORECASE,
)


class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"


@dataclass(frozen=True)
class LookupToken:
    """Symbolic entity reference embedded in a filter value."""

    kind: str
    name: str

    @classmethod
    def parse(cls, value: Any) -> LookupToken | None:
        if not isinstance(value, str):
            return None
        m = _LOOKUP_RE.match(value.strip())
        if not m:
            return None
        kind = (m.group("kind") or m.group("legacy")).lower()
        name = m.group("name").strip()
        if not name:
            return None
        return cls(kind=kind, name=name)

    def __str__(self) -> str:
        return f"lookup:{self.kind}:{self.name}"


class Filter(BaseModel):
    column: str
    operator: FilterOperator
    value: Any = None

    @property
    def lookup(self) -> LookupToken | None:
        return LookupToken.parse(self.value)


class Order(BaseModel):
    column: str
    ascending: bool = True


class Projection(BaseModel):
    """What a descriptor's ``select`` asks for."""

    kind: Literal["columns", "count", "aggregate"]
    columns: list[str] = Field(default_factory=list)  # empty -> all visible columns
    function: str | None = None
    column: str | None = None

    @property
    def result_key(self) -> str:
        return self.function or "count"


def parse_select(select: str | None) -> Projection:
    """Classify a ``select`` expression.

    Raises ``ValueError`` when more than one aggregate appears or an
    aggregate other than ``count`` has no column.
    """
    text = (select or "*").strip() or "*"
    matches = _AGG_RE.findall(text)

    if len(matches) > 1:
        raise ValueError(
            f"At most one aggregate function is allowed in select, got {len(matches)}: '{text}'"
        )

    if text.lower() == "count" or (matches and matches[0][0].lower() == "count"):
        return Projection(kind="count", function="count")

    if matches:
        fn, col = matches[0][0].lower(), matches[0][1]
        if not col or col == "*":
            raise ValueError(f"Aggregate '{fn}' needs a column, got '{text}'")
        return Projection(kind="aggregate", function=fn, column=col)

    cols = [c.strip() for c in text.split(",") if c.strip()]
    if "*" in cols:
        return Projection(kind="columns")
    return Projection(kind="columns", columns=cols)


class QueryDescriptor(BaseModel):
    """Parsed representation of a read-only question against one table."""

    table: str = Field(..., description="Table to read (e.g. 'leads')")
    select: str = Field("*", description="Columns, '*', count(*) or one of sum/avg/min/max(column)")
    filters: list[Filter] = Field(default_factory=list)
    order: Order | None = None
    limit: int | None = None
    explanation: str = ""

    @field_validator("select", mode="before")
    @classmethod
    def _default_select(cls, v: Any) -> Any:
        return "*" if v is None else v

    @field_validator("select")
    @classmethod
    def _check_select(cls, v: str) -> str:
        parse_select(v)
        return v

    @field_validator("filters", mode="before")
    @classmethod
    def _default_filters(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("limit")
    @classmethod
    def _positive_limit(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("explanation", mode="before")
    @classmethod
    def _default_explanation(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def projection(self) -> Projection:
        return parse_select(self.select)
