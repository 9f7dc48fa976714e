"""Request-scoped dependencies shared by the routers."""
from __future__ import annotations

from fastapi import HTTPException, Request

from crm_assistant.assistant.service import AnalyticsAssistant


def get_assistant(request: Request) -> AnalyticsAssistant:
    assistant = getattr(request.app.state, "assistant", None)
    if assistant is None:
        raise HTTPException(status_code=503, detail="Assistant is not initialised")
    return assistant
