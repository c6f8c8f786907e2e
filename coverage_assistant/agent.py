"""LangGraph orchestration loop for the Medicare Coverage Assistant.

Architecture:
  One conversational turn is a LangGraph ``StateGraph`` with three nodes:

    1. **model**     composes the instructions from the trigger vector and
                     the session state, then calls the model provider under
                     a per-iteration timeout
    2. **tools**     executes the local capability calls the model asked
                     for, in order, and folds each result into the session
    3. **finalize**  updates the session from the final text, strips the
                     requirements block and extracts the suggestions

  Routing:
    model → (local calls?)    → tools → model (loop)
          → (no local calls?) → finalize → END

  The model node refuses to run once ``max_iterations`` calls have been
  made, so a model that never stops calling capabilities ends the turn
  with ``ToolLoopExceeded`` after exactly ``max_iterations`` model calls.

  Memory:
    Nothing is checkpointed.  The caller passes the message history and the
    serialized ``SessionState`` with every turn and gets the updated state
    back in the ``TurnResult``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Annotated, Any, Protocol

from langchain_core.messages import AIMessage, AnyMessage, BaseMessage, HumanMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from coverage_assistant import config
from coverage_assistant.errors import CoverageAssistantError, ModelTimeoutError, ToolLoopExceeded
from coverage_assistant.extraction import (
    fold_capability_result,
    message_text,
    strip_requirements_block,
    update_from_assistant_text,
    update_from_user_messages,
)
from coverage_assistant.prompts import compose, detect_triggers
from coverage_assistant.services.cache import CacheManager
from coverage_assistant.services.knowledge_client import KnowledgeClient
from coverage_assistant.services.llm import AnthropicModelProvider, ModelTurn
from coverage_assistant.services.metrics import MetricsClient
from coverage_assistant.services.metrics import metrics as default_metrics
from coverage_assistant.services.resilience import ResilienceGovernor, abandon_on
from coverage_assistant.session import SessionState
from coverage_assistant.suggestions import extract_suggestions
from coverage_assistant.tools.appeals import APPEAL_TOOLS
from coverage_assistant.tools.coding import CODING_TOOLS
from coverage_assistant.tools.coverage import make_coverage_tools
from coverage_assistant.tools.drugs import check_sad_list
from coverage_assistant.tools.evidence import make_evidence_tools
from coverage_assistant.tools.providers import make_provider_tools
from coverage_assistant.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ModelProvider(Protocol):
    def invoke(self, messages: Sequence[AnyMessage], instructions: str) -> ModelTurn: ...


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph for one turn.

    ``messages`` uses the ``add_messages`` reducer so each node appends.
    ``session`` is the turn's own copy of the caller's ``SessionState``;
    nodes mutate it in place and hand it back.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    session: SessionState
    iteration: int
    capabilities_used: list[str]
    content: str
    suggestions: list[str]


@dataclass
class TurnResult:
    content: str
    suggestions: list[str]
    session_state: SessionState
    capabilities_used: list[str] = field(default_factory=list)
    iterations: int = 0


# ── History conversion ──────────────────────────────────────────────


_ROLES = {"user": HumanMessage, "human": HumanMessage, "assistant": AIMessage, "ai": AIMessage}


def to_messages(history: Iterable[BaseMessage | dict[str, Any]]) -> list[BaseMessage]:
    """Accept LangChain messages or ``{role, content}`` dicts."""
    messages: list[BaseMessage] = []
    for item in history:
        if isinstance(item, BaseMessage):
            messages.append(item)
            continue
        role = str(item.get("role", "")).lower()
        cls = _ROLES.get(role)
        if cls is None:
            raise ValueError(f"Unsupported message role: {role!r}")
        messages.append(cls(content=item.get("content", "")))
    return messages


def _add_used(used: list[str], names: Iterable[str]) -> list[str]:
    out = list(used)
    for name in names:
        if name and name not in out:
            out.append(name)
    return out


# ── Nodes ────────────────────────────────────────────────────────────


def _make_model_node(provider: ModelProvider, max_iterations: int, timeout: float):
    """Create the node that calls the model once per iteration."""

    def call_with_timeout(messages: list[AnyMessage], instructions: str, iteration: int) -> ModelTurn:
        abandoned = threading.Event()

        def invoke() -> ModelTurn:
            with abandon_on(abandoned):
                return provider.invoke(messages, instructions)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-call")
        future = pool.submit(invoke)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            # the worker finishes its current attempt and makes no more
            abandoned.set()
            raise ModelTimeoutError(timeout, iteration) from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def model_node(state: AgentState) -> dict:
        iteration = state["iteration"]
        if iteration >= max_iterations:
            raise ToolLoopExceeded(max_iterations)
        iteration += 1

        session = state["session"]
        triggers = detect_triggers(state["messages"], session)
        instructions = compose(triggers, session)
        turn = call_with_timeout(state["messages"], instructions, iteration)

        local_names = [c["name"] for c in turn.local_calls]
        remote_names = [c["name"] for c in turn.remote_calls]
        logger.info(
            "Iteration %d/%d: local=%s remote=%s session=%s",
            iteration, max_iterations, local_names, remote_names,
            session.redacted_snapshot(),
        )
        if remote_names:
            for call in turn.remote_calls:
                logger.debug("Remote capability %s input=%s", call["name"], call["input"])
        missing = session.missing_intake()
        if local_names and missing:
            logger.warning(
                "Capabilities %s invoked before intake was complete (missing: %s)",
                local_names, ", ".join(missing),
            )

        return {
            "messages": [turn.message],
            "iteration": iteration,
            "capabilities_used": _add_used(state["capabilities_used"], remote_names),
        }

    return model_node


def _make_tools_node(registry: ToolRegistry):
    """Create the node that runs local capability calls in request order."""

    def tools_node(state: AgentState) -> dict:
        session = state["session"]
        last = state["messages"][-1]
        results: list[ToolMessage] = []
        names: list[str] = []
        for call in last.tool_calls:
            name = call["name"]
            names.append(name)
            session.record_attempt(name)
            result = registry.execute(name, call.get("args") or {})
            results.append(ToolMessage(
                content=result.to_content(),
                tool_call_id=call["id"],
                name=name,
                status="success" if result.success else "error",
            ))
            fold_capability_result(name, result.success, result.data, session)
            logger.debug("Capability %s → success=%s", name, result.success)

        return {
            "messages": results,
            "session": session,
            "capabilities_used": _add_used(state["capabilities_used"], names),
        }

    return tools_node


def finalize_node(state: AgentState) -> dict:
    """Turn the last model message into content + suggestions."""
    session = state["session"]
    text = message_text(state["messages"][-1])
    update_from_assistant_text(text, session)
    result = extract_suggestions(strip_requirements_block(text))
    return {
        "session": session,
        "content": result.clean_text,
        "suggestions": result.suggestions,
    }


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to tools when the model asked for local capabilities."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return "finalize"


# ── Graph assembly ───────────────────────────────────────────────────


def build_graph(provider: ModelProvider, registry: ToolRegistry, max_iterations: int, timeout: float):
    graph = StateGraph(AgentState)
    graph.add_node("model", _make_model_node(provider, max_iterations, timeout))
    graph.add_node("tools", _make_tools_node(registry))
    graph.add_node("finalize", finalize_node)

    graph.set_entry_point("model")
    graph.add_conditional_edges(
        "model", should_use_tools, {"tools": "tools", "finalize": "finalize"},
    )
    graph.add_edge("tools", "model")
    graph.add_edge("finalize", END)
    return graph.compile()


class CoverageAgent:
    """Runs one conversational turn at a time through the compiled graph."""

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        *,
        max_iterations: int | None = None,
        iteration_timeout: float | None = None,
        metrics: MetricsClient | None = None,
        governor: ResilienceGovernor | None = None,
        caches: CacheManager | None = None,
        client: KnowledgeClient | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.max_iterations = max_iterations or config.MAX_TOOL_ITERATIONS
        self.iteration_timeout = iteration_timeout or config.ITERATION_TIMEOUT_SECONDS
        self.governor = governor
        self.caches = caches
        self.client = client
        self._metrics = metrics or default_metrics
        self._graph = build_graph(provider, registry, self.max_iterations, self.iteration_timeout)

    def run_turn(
        self,
        history: Iterable[BaseMessage | dict[str, Any]],
        session_state: SessionState | dict[str, Any] | None = None,
    ) -> TurnResult:
        """Drive one turn.  The caller's ``session_state`` is not mutated.

        Raises the turn-level errors (``ToolLoopExceeded``,
        ``ModelTimeoutError``, transport and governor errors from the model
        call).  Capability faults never escape.
        """
        messages = to_messages(history)
        if isinstance(session_state, SessionState):
            session = session_state.copy_state()
        else:
            session = SessionState.from_dict(session_state)
        update_from_user_messages(messages, session)

        t0 = time.perf_counter()
        try:
            final = self._graph.invoke(
                {
                    "messages": messages,
                    "session": session,
                    "iteration": 0,
                    "capabilities_used": [],
                    "content": "",
                    "suggestions": [],
                },
                config={"recursion_limit": 2 * self.max_iterations + 4},
            )
        except Exception as exc:
            kind = exc.kind if isinstance(exc, CoverageAssistantError) else "internal"
            self._metrics.record_turn(kind, 0, (time.perf_counter() - t0) * 1000)
            raise

        elapsed = (time.perf_counter() - t0) * 1000
        self._metrics.record_turn("ok", final["iteration"], elapsed)
        logger.debug("Turn finished in %.0fms after %d iteration(s)", elapsed, final["iteration"])
        return TurnResult(
            content=final["content"],
            suggestions=final["suggestions"],
            session_state=final["session"],
            capabilities_used=final["capabilities_used"],
            iterations=final["iteration"],
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


# ── Wiring ───────────────────────────────────────────────────────────


def build_registry(client: KnowledgeClient, *, metrics: MetricsClient | None = None) -> ToolRegistry:
    """Every capability: local lookups plus the network-backed ones."""
    tools = [
        *CODING_TOOLS,
        check_sad_list,
        *APPEAL_TOOLS,
        *make_coverage_tools(client),
        *make_provider_tools(client),
        *make_evidence_tools(client),
    ]
    return ToolRegistry(tools, metrics=metrics)


def create_coverage_agent(
    governor: ResilienceGovernor | None = None,
    caches: CacheManager | None = None,
) -> CoverageAgent:
    """Build the production agent with shared governor and caches."""
    governor = governor or ResilienceGovernor.from_config()
    caches = caches or CacheManager(
        config.CACHE_TTL_SECONDS, max_entries=config.CACHE_MAX_ENTRIES, metrics=default_metrics,
    )
    client = KnowledgeClient(governor, caches)
    registry = build_registry(client)
    provider = AnthropicModelProvider(governor, registry.schemas())
    agent = CoverageAgent(provider, registry, governor=governor, caches=caches, client=client)
    logger.debug(
        "Coverage agent ready: model=%s capabilities=%d max_iterations=%d",
        provider.model_name, len(registry), agent.max_iterations,
    )
    return agent
