"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """One prior message in the conversation."""

    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=20000)


class ChatRequest(BaseModel):
    """Full history plus the session state returned by the previous turn."""

    messages: list[ChatMessage] = Field(..., min_length=1, max_length=200)
    session_state: dict[str, Any] | None = Field(
        None, description="State returned by the previous turn; omit to start fresh",
    )


class ChatResponse(BaseModel):
    """Response from the assistant."""

    content: str = Field(..., description="The assistant's reply, suggestions removed")
    suggestions: list[str] = Field(default_factory=list)
    session_state: dict[str, Any] = Field(..., description="Send back with the next turn")
    capabilities_used: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "coverage-assistant"


class DependencyHealthResponse(BaseModel):
    """Governor and cache state per dependency."""

    status: str = "ok"
    dependencies: dict[str, dict[str, Any]] = Field(default_factory=dict)
    caches: dict[str, dict[str, Any]] = Field(default_factory=dict)
