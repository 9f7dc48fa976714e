"""
FastAPI application entry-point.

The application root owns every long-lived resource: the async engine, the
record store, the text generator and the delegated endpoint client.  They
are built in the lifespan handler, hung off ``app.state`` and disposed on
shutdown.  Routers reach the assistant through the ``get_assistant``
dependency.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_assistant.api.routers import catalog, query
from crm_assistant.assistant.endpoints import CrmEndpointClient
from crm_assistant.assistant.llm_client import TextGenerator
from crm_assistant.assistant.service import AnalyticsAssistant
from crm_assistant.core.config import get_settings
from crm_assistant.core.logging import get_logger
from crm_assistant.db.connection import create_engine_from_settings
from crm_assistant.db.store import RecordStore
from crm_assistant.schema.loader import load_crm_schema

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "assistant", None) is not None:
        yield
        return

    settings = get_settings()
    engine = create_engine_from_settings(settings)
    endpoints = CrmEndpointClient(settings.crm_api_base_url, settings.endpoint_timeout_seconds)
    store = RecordStore(engine, load_crm_schema(), settings.query_timeout_ms)
    llm = TextGenerator.from_settings(settings)

    app.state.assistant = AnalyticsAssistant.from_settings(settings, store, llm, endpoints)
    logger.info("Assistant ready  provider=%s  environment=%s",
                llm.provider, settings.environment)
    try:
        yield
    finally:
        await endpoints.aclose()
        await engine.dispose()
        app.state.assistant = None
        logger.info("Assistant resources released")


def create_app(assistant: AnalyticsAssistant | None = None) -> FastAPI:
    """Build the API.  Pass *assistant* to skip resource construction (tests)."""
    app = FastAPI(
        title="CRM Analytics Assistant",
        version="0.1.0",
        description="Natural-language analytics over CRM leads and sales",
        lifespan=lifespan,
    )
    app.state.assistant = assistant

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(query.router, tags=["Assistant"])
    app.include_router(catalog.router, tags=["Catalog"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
