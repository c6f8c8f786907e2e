"""FastAPI route definitions for the coverage assistant API."""

from __future__ import annotations

import asyncio
import logging
import math

from fastapi import APIRouter, HTTPException, Request

from coverage_assistant.api.schemas import (
    ChatRequest,
    ChatResponse,
    DependencyHealthResponse,
    HealthResponse,
)
from coverage_assistant.errors import CoverageAssistantError, RateLimitError
from coverage_assistant.session import SessionState

logger = logging.getLogger(__name__)

router = APIRouter()

RETRY_MESSAGE = "Something went wrong while preparing your answer. Please try again."

# kind → (status, user-facing detail)
ERROR_RESPONSES: dict[str, tuple[int, str]] = {
    "rate_limited": (429, "We're getting a lot of questions right now. Please try again shortly."),
    "circuit_open": (503, "The assistant is temporarily unavailable. Please try again in a minute."),
    "model_timeout": (504, "That took longer than expected. Please try again."),
    "tool_loop_exceeded": (500, RETRY_MESSAGE),
    "retryable_transport": (502, RETRY_MESSAGE),
    "non_retryable_transport": (502, RETRY_MESSAGE),
}


def error_response(exc: Exception) -> HTTPException:
    """Map a turn-level failure to a generic HTTP error."""
    kind = exc.kind if isinstance(exc, CoverageAssistantError) else "internal"
    status, detail = ERROR_RESPONSES.get(kind, (500, RETRY_MESSAGE))
    headers = {"X-Error-Kind": kind}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return HTTPException(status_code=status, detail=detail, headers=headers)


def _get_agent(request: Request):
    """Retrieve the agent built during the FastAPI lifespan (see ``server.py``)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/health/dependencies", response_model=DependencyHealthResponse)
async def dependency_health(http_request: Request):
    """Circuit and token-bucket state per dependency, plus cache stats."""
    agent = _get_agent(http_request)
    dependencies = agent.governor.snapshot() if agent.governor is not None else {}
    caches = agent.caches.stats() if agent.caches is not None else {}
    degraded = any(d["circuit"] != "closed" for d in dependencies.values())
    return DependencyHealthResponse(
        status="degraded" if degraded else "ok",
        dependencies=dependencies,
        caches=caches,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Run one conversational turn.

    The client sends the whole history and the ``session_state`` from the
    previous response; nothing is stored server-side.  ``run_turn`` is
    blocking, so it is offloaded with ``asyncio.to_thread``.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        session = SessionState.from_dict(request.session_state)
    except ValueError as e:
        raise HTTPException(status_code=422, detail="Invalid session_state.") from e

    history = [m.model_dump() for m in request.messages]
    try:
        result = await asyncio.to_thread(agent.run_turn, history, session)
    except CoverageAssistantError as e:
        logger.warning("[%s] Turn failed: %s (%s)", request_id, e, e.kind)
        raise error_response(e) from e
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise error_response(e) from e

    return ChatResponse(
        content=result.content,
        suggestions=result.suggestions,
        session_state=result.session_state.to_dict(),
        capabilities_used=result.capabilities_used,
    )
