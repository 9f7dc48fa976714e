"""SQLAlchemy async engine factory.

The engine is created once by the application root and handed to the
record store.  Every store query runs through ``readonly_connection``,
which on PostgreSQL sets the transaction to READ ONLY and applies a
per-statement timeout before anything else executes.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from crm_assistant.core.config import Settings, get_settings
from crm_assistant.core.logging import get_logger

logger = get_logger(__name__)


def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    """Build the async engine described by *settings* (caller owns disposal)."""
    settings = settings or get_settings()
    url = settings.database_url

    kwargs: dict = {"echo": False}
    if url.startswith("postgresql"):
        kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

    engine = create_async_engine(url, **kwargs)
    logger.info("DB engine created  dialect=%s", engine.dialect.name)
    return engine


@asynccontextmanager
async def readonly_connection(engine: AsyncEngine, timeout_ms: int) -> AsyncIterator[AsyncConnection]:
    """Yield a connection that cannot write.

    The transaction is rolled back and the connection returned to the pool
    on exit.
    """
    async with engine.connect() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("SET TRANSACTION READ ONLY"))
            await conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield conn
