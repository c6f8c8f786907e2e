"""Model provider adapter over ``ChatAnthropic``.

One :meth:`AnthropicModelProvider.invoke` is one model call.  It runs
through the shared governor under the ``claude`` dependency, maps SDK
failures onto the transport taxonomy and splits the response into local
capability calls (``tool_use``: executed by the registry) and remote ones
(``server_tool_use`` / ``mcp_tool_use``: resolved by the provider and only
reported back).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, SystemMessage

from coverage_assistant import config
from coverage_assistant.errors import NonRetryableTransportError, RetryableTransportError
from coverage_assistant.extraction import message_text
from coverage_assistant.services.resilience import ResilienceGovernor

logger = logging.getLogger(__name__)

DEPENDENCY = "claude"
REMOTE_CALL_TYPES = ("server_tool_use", "mcp_tool_use")
MCP_BETA = "mcp-client-2025-04-04"


@dataclass
class ModelTurn:
    """One model response, split into what the loop needs."""

    message: AIMessage
    text: str
    local_calls: list[dict[str, Any]] = field(default_factory=list)
    remote_calls: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return not self.local_calls


def remote_calls_in(message: AIMessage) -> list[dict[str, Any]]:
    """``{name, input, server?}`` for each provider-resolved invocation block."""
    if not isinstance(message.content, list):
        return []
    calls = []
    for block in message.content:
        if isinstance(block, dict) and block.get("type") in REMOTE_CALL_TYPES:
            call = {"name": block.get("name", ""), "input": block.get("input", {})}
            if block.get("server_name"):
                call["server"] = block["server_name"]
            calls.append(call)
    return calls


def classify_provider_error(exc: Exception) -> Exception:
    """Map an Anthropic SDK exception onto the transport taxonomy.

    Anything that is not an SDK transport error is returned unchanged and
    propagates as a non-retryable fault.
    """
    if isinstance(exc, anthropic.APIConnectionError):
        # APITimeoutError is a subclass
        return RetryableTransportError(
            f"Model provider unreachable: {type(exc).__name__}", dependency=DEPENDENCY,
        )
    if isinstance(exc, anthropic.APIStatusError):
        status = exc.status_code
        cls = RetryableTransportError if status == 429 or status >= 500 else NonRetryableTransportError
        return cls(
            f"Model provider returned {status}", dependency=DEPENDENCY, status_code=status,
        )
    return exc


class AnthropicModelProvider:
    """Tool-bound ``ChatAnthropic`` wrapped by the resilience governor."""

    def __init__(
        self,
        governor: ResilienceGovernor,
        tool_schemas: Sequence[dict[str, Any]],
        *,
        llm: Any = None,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
        remote_servers: dict[str, str] | None = None,
    ) -> None:
        self._governor = governor
        self.model_name = model or config.MODEL_NAME
        servers = config.REMOTE_CAPABILITY_SERVERS if remote_servers is None else remote_servers
        if llm is None:
            llm = self._build_llm(
                max_tokens or config.MAX_OUTPUT_TOKENS,
                timeout or config.ITERATION_TIMEOUT_SECONDS,
                servers,
            )
        self._llm = llm.bind_tools(list(tool_schemas)) if tool_schemas else llm

    def _build_llm(
        self,
        max_tokens: int,
        timeout: float,
        servers: dict[str, str],
    ) -> ChatAnthropic:
        extra: dict[str, Any] = {}
        if servers:
            extra["betas"] = [MCP_BETA]
            extra["mcp_servers"] = [
                {"type": "url", "name": name, "url": url} for name, url in servers.items()
            ]
            logger.info("Remote capability servers enabled: %s", ", ".join(servers))
        return ChatAnthropic(
            model=self.model_name,
            api_key=config.ANTHROPIC_API_KEY,
            temperature=0.1,
            max_tokens=max_tokens,
            timeout=timeout,
            # Retries belong to the governor
            max_retries=0,
            **extra,
        )

    def _invoke_once(self, messages: list[AnyMessage]) -> AIMessage:
        try:
            return self._llm.invoke(messages)
        except (anthropic.APIConnectionError, anthropic.APIStatusError) as exc:
            raise classify_provider_error(exc) from exc

    def invoke(self, messages: Sequence[AnyMessage], instructions: str) -> ModelTurn:
        """Send the history with *instructions* as the system prompt."""
        payload = [SystemMessage(content=instructions), *messages]
        response = self._governor.call(
            DEPENDENCY, lambda: self._invoke_once(payload), operation="invoke",
        )
        return ModelTurn(
            message=response,
            text=message_text(response),
            local_calls=list(response.tool_calls or []),
            remote_calls=remote_calls_in(response),
        )
