"""
Validates a QueryDescriptor against the CRM schema allow-list.

Checks performed:
  1. Table exists in the schema
  2. Every projected column exists and is not blocked
  3. Aggregate functions other than count target a numeric column
  4. Every filter column exists and is not blocked
  5. ``in`` filters carry a list value
  6. Lookup tokens name a known lookup kind
  7. The order column exists
"""
from __future__ import annotations

from crm_assistant.assistant.descriptor import FilterOperator, QueryDescriptor
from crm_assistant.schema.loader import CrmSchema, load_crm_schema


def validate_descriptor(descriptor: QueryDescriptor, schema: CrmSchema | None = None) -> list[str]:
    """Return a list of validation error messages (empty list = descriptor is valid)."""
    if schema is None:
        schema = load_crm_schema()

    errors: list[str] = []

    table = schema.table(descriptor.table)
    if table is None:
        errors.append(
            f"Unknown table '{descriptor.table}'. "
            f"Allowed: {', '.join(schema.get_table_names())}"
        )
        return errors  # columns can't be checked without a table

    def check_column(col: str, where: str) -> None:
        if col not in table.columns:
            errors.append(f"Unknown column '{col}' in {where} for table '{table.name}'.")
        elif schema.is_blocked(col):
            errors.append(f"Blocked column '{col}' may not be used in {where}.")

    projection = descriptor.projection
    if projection.kind == "columns":
        for col in projection.columns:
            check_column(col, "select")
    elif projection.kind == "aggregate" and projection.column:
        check_column(projection.column, "select")
        coldef = table.columns.get(projection.column)
        if coldef is not None and not coldef.is_numeric:
            errors.append(
                f"Aggregate '{projection.function}' needs a numeric column; "
                f"'{projection.column}' is {coldef.type}."
            )

    for f in descriptor.filters:
        check_column(f.column, "filters")
        if f.operator == FilterOperator.IN and not isinstance(f.value, list):
            errors.append(f"Filter on '{f.column}' uses 'in' but its value is not a list.")
        token = f.lookup
        if token is not None and schema.lookup(token.kind) is None:
            errors.append(
                f"Unknown lookup kind '{token.kind}' in filter on '{f.column}'. "
                f"Allowed: {', '.join(schema.lookups)}"
            )

    if descriptor.order is not None:
        check_column(descriptor.order.column, "order")

    return errors
