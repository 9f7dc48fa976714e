"""POST /query -- answer a natural-language analytics question."""
from __future__ import annotations

import asyncio
import traceback
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from crm_assistant.api.dependencies import get_assistant
from crm_assistant.assistant.service import AnalyticsAssistant
from crm_assistant.core.config import Settings, get_settings
from crm_assistant.core.errors import ServiceUnavailable, ValidationError
from crm_assistant.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class QueryRequest(BaseModel):
    # Validated by the assistant so that a missing, non-string or blank
    # question all answer 400 rather than 422.
    question: Any = None


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return authorization.strip()


@router.post("/query")
async def query_endpoint(
    req: QueryRequest | None = None,
    authorization: str | None = Header(None),
    assistant: AnalyticsAssistant = Depends(get_assistant),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Classify the question, run the chosen strategy, and phrase the answer."""
    question = req.question if req is not None else None
    try:
        async with asyncio.timeout(settings.request_timeout_seconds):
            answer = await assistant.answer(question, auth_token=_bearer_token(authorization))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ServiceUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail={"error": str(exc), "setupRequired": True},
        )
    except TimeoutError:
        logger.warning("Query exceeded %ss deadline: %s",
                       settings.request_timeout_seconds, question)
        raise HTTPException(status_code=504, detail="Query timed out")
    except Exception as exc:
        logger.exception("Assistant.answer failed")
        detail: dict[str, Any] = {"error": str(exc) or type(exc).__name__}
        if not settings.is_production:
            detail["details"] = traceback.format_exc()
        raise HTTPException(status_code=500, detail=detail)

    return answer.to_dict()
