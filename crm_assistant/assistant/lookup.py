"""
Lookup resolution -- replaces lookup tokens in filter values with ids.

``lookup:booker:Chicko`` becomes the id of the first user whose name
contains "chicko" (case-insensitive).  A token that matches nobody, or
names an unknown lookup kind, drops its filter: the query then runs as if
that filter had never been given.
"""
from __future__ import annotations

from crm_assistant.assistant.descriptor import Filter, FilterOperator
from crm_assistant.core.logging import get_logger
from crm_assistant.db.store import RecordStore

logger = get_logger(__name__)


def escape_like(text: str) -> str:
    """Make *text* match literally inside a LIKE pattern (escape char ``\\``)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class LookupResolver:
    def __init__(self, store: RecordStore):
        self.store = store

    async def resolve(self, filters: list[Filter]) -> list[Filter]:
        """Return *filters* with every lookup token replaced or its filter removed.

        Issues one lookup query per tokenized filter.
        """
        resolved: list[Filter] = []
        for f in filters:
            token = f.lookup
            if token is None:
                resolved.append(f)
                continue

            target = self.store.schema.lookup(token.kind)
            if target is None:
                logger.warning("Unknown lookup kind '%s' -- dropping filter on %s", token.kind, f.column)
                continue

            rows = await self.store.fetch(
                target.table,
                columns=[target.id_column, target.match_column],
                filters=[Filter(column=target.match_column, operator=FilterOperator.ILIKE,
                                value=f"%{escape_like(token.name)}%")],
                limit=1,
            )
            if not rows:
                logger.warning("No %s matching '%s' -- dropping filter on %s",
                               token.kind, token.name, f.column)
                continue

            match = rows[0]
            logger.info("Resolved %s -> %s (%s)", token, match[target.id_column], match[target.match_column])
            resolved.append(f.model_copy(update={"value": match[target.id_column]}))
        return resolved
