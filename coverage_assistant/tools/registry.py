"""Tool registry: capability name → executor + advertised schema.

Capabilities are LangChain tools (``@tool``) that return a
:class:`ToolResult`.  The registry never lets a capability fault escape:
an unknown name or an executor exception both come back as
``ToolResult(success=False)`` so the model can recover and the loop keeps
going.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel

from coverage_assistant.errors import (
    CapabilityExecutionFault,
    CircuitOpenError,
    CoverageAssistantError,
    RateLimitError,
    UnknownCapabilityError,
)
from coverage_assistant.services.metrics import MetricsClient
from coverage_assistant.services.metrics import metrics as default_metrics

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Uniform capability result.  ``success=False`` is the normal "not found" path."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_content(self) -> str:
        """JSON text sent back to the model as the tool result content."""
        return json.dumps(self.model_dump(exclude_none=True), default=str)


def unavailable(service: str, exc: CoverageAssistantError) -> ToolResult:
    """Failed result for a knowledge service that could not be reached."""
    logger.warning("%s unavailable: %s", service, exc)
    if isinstance(exc, (CircuitOpenError, RateLimitError)):
        return ToolResult.fail(
            f"{service} is temporarily unavailable. Try again in about "
            f"{max(1, round(exc.retry_after))} seconds, or continue without it."
        )
    return ToolResult.fail(f"{service} could not be reached. Continue without it.")


def anthropic_schema(tool: BaseTool) -> dict[str, Any]:
    """``{name, description, input_schema}`` for a LangChain tool."""
    function = convert_to_openai_tool(tool)["function"]
    return {
        "name": function["name"],
        "description": function.get("description", ""),
        "input_schema": function.get("parameters", {"type": "object", "properties": {}}),
    }


class ToolRegistry:
    """Name → tool lookup with fault containment."""

    def __init__(
        self,
        tools: Iterable[BaseTool] = (),
        *,
        metrics: MetricsClient | None = None,
    ) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._metrics = metrics or default_metrics
        for t in tools:
            self.register(t)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Capability already registered: {tool.name}")
        self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict[str, Any]]:
        return [anthropic_schema(t) for t in self._tools.values()]

    def schema(self, name: str) -> dict[str, Any] | None:
        tool = self._tools.get(name)
        return anthropic_schema(tool) if tool is not None else None

    def execute(self, name: str, args: dict[str, Any] | None = None) -> ToolResult:
        """Run one capability; always returns a ``ToolResult``."""
        tool = self._tools.get(name)
        if tool is None:
            error = UnknownCapabilityError(name)
            logger.warning("Model requested unknown capability: %s", name)
            self._metrics.record_capability(name, success=False)
            return ToolResult.fail(str(error))

        try:
            raw = tool.invoke(args or {})
        except Exception as exc:
            fault = CapabilityExecutionFault(name, exc)
            logger.exception("Capability %s raised", name)
            self._metrics.record_capability(name, success=False)
            return ToolResult.fail(str(fault))

        result = raw if isinstance(raw, ToolResult) else ToolResult.ok(raw)
        self._metrics.record_capability(name, success=result.success)
        return result
