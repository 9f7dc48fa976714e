"""
Loads, parses, and caches the CRM schema YAML into strongly-typed objects.

The schema is the single source of truth for:
  - queryable tables and their typed columns
  - lookup kinds (symbolic entity names -> ids)
  - security rules (blocked columns, row cap, read-only)
  - the plain-language notes handed to the query generator

It also builds the SQLAlchemy ``MetaData`` the record store queries through.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.types import TypeEngine

_SCHEMA_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "crm_schema.yml"

NUMERIC_TYPES = frozenset({"integer", "numeric"})


def _sql_type(type_name: str) -> TypeEngine:
    if type_name == "uuid":
        return Uuid(as_uuid=False)
    if type_name == "text":
        return Text()
    if type_name == "integer":
        return Integer()
    if type_name == "numeric":
        return Numeric(12, 2, asdecimal=False)
    if type_name == "timestamp":
        return DateTime(timezone=True)
    if type_name == "boolean":
        return Boolean()
    raise ValueError(f"Unsupported column type '{type_name}'")


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class ColumnDef:
    name: str
    type: str
    description: str = ""
    values: list[str] = field(default_factory=list)
    primary_key: bool = False

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES


@dataclass(frozen=True)
class TableDef:
    name: str
    description: str
    columns: dict[str, ColumnDef]


@dataclass(frozen=True)
class LookupDef:
    kind: str
    table: str
    match_column: str
    id_column: str


@dataclass(frozen=True)
class SecurityRules:
    blocked_columns: list[str] = field(default_factory=list)
    read_only: bool = True
    max_rows: int = 1000


@dataclass
class CrmSchema:
    """Fully parsed CRM schema."""

    version: int
    tables: dict[str, TableDef]
    lookups: dict[str, LookupDef]
    security: SecurityRules
    notes: str = ""

    # ── Convenience look-ups ─────────────────────────

    def table(self, name: str) -> TableDef | None:
        return self.tables.get(name)

    def column(self, table: str, column: str) -> ColumnDef | None:
        tdef = self.tables.get(table)
        if tdef is None:
            return None
        return tdef.columns.get(column)

    def lookup(self, kind: str) -> LookupDef | None:
        return self.lookups.get(kind.lower())

    def is_blocked(self, column: str) -> bool:
        return column in self.security.blocked_columns

    def visible_columns(self, table: str) -> list[str]:
        """Columns of *table* that may appear in results (blocked ones removed)."""
        tdef = self.tables[table]
        return [c for c in tdef.columns if not self.is_blocked(c)]

    def get_table_names(self) -> list[str]:
        return list(self.tables.keys())

    # ── SQLAlchemy metadata ──────────────────────────

    @cached_property
    def metadata(self) -> MetaData:
        md = MetaData()
        for tdef in self.tables.values():
            Table(
                tdef.name,
                md,
                *[
                    Column(c.name, _sql_type(c.type), primary_key=c.primary_key)
                    for c in tdef.columns.values()
                ],
            )
        return md

    def sa_table(self, name: str) -> Table:
        return self.metadata.tables[name]

    # ── Prompt rendering ─────────────────────────────

    def describe(self) -> str:
        """Render the visible part of the schema as plain text for the generator."""
        lines = ["Database Schema:", ""]
        for i, tdef in enumerate(self.tables.values(), 1):
            lines.append(f"{i}. {tdef.name} table ({tdef.description}):")
            for col in tdef.columns.values():
                if self.is_blocked(col.name):
                    continue
                line = f"   - {col.name} ({col.type})"
                if col.values:
                    line += ": " + ", ".join(f"'{v}'" for v in col.values)
                if col.description:
                    line += f" - {col.description}"
                lines.append(line)
            lines.append("")
        if self.notes:
            lines.append(self.notes.strip())
        return "\n".join(lines)


# ── Parsing ──────────────────────────────────────────────

def _parse_columns(raw: dict[str, Any]) -> dict[str, ColumnDef]:
    cols: dict[str, ColumnDef] = {}
    for name, entry in (raw or {}).items():
        if isinstance(entry, str):
            entry = {"type": entry}
        cols[name] = ColumnDef(
            name=name,
            type=entry.get("type", "text"),
            description=entry.get("description", ""),
            values=[str(v) for v in entry.get("values", [])],
            primary_key=bool(entry.get("primary_key", False)),
        )
    return cols


def parse_schema(raw: dict[str, Any]) -> CrmSchema:
    """Build a CrmSchema from the YAML document structure."""
    tables = {
        name: TableDef(
            name=name,
            description=entry.get("description", ""),
            columns=_parse_columns(entry.get("columns", {})),
        )
        for name, entry in (raw.get("tables") or {}).items()
    }

    lookups = {
        kind.lower(): LookupDef(
            kind=kind.lower(),
            table=entry["table"],
            match_column=entry.get("match_column", "name"),
            id_column=entry.get("id_column", "id"),
        )
        for kind, entry in (raw.get("lookups") or {}).items()
    }

    sec = raw.get("security") or {}
    security = SecurityRules(
        blocked_columns=list(sec.get("blocked_columns", [])),
        read_only=bool(sec.get("read_only", True)),
        max_rows=int(sec.get("max_rows", 1000)),
    )

    return CrmSchema(
        version=int(raw.get("version", 1)),
        tables=tables,
        lookups=lookups,
        security=security,
        notes=raw.get("notes", "") or "",
    )


@lru_cache
def load_crm_schema(path: Path | None = None) -> CrmSchema:
    """Load and cache the CRM schema (defaults to ``semantic_layer/crm_schema.yml``)."""
    schema_path = path or _SCHEMA_PATH
    with open(schema_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    return parse_schema(raw)
