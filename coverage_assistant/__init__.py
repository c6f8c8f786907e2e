"""Medicare Coverage Assistant: a conversational guide to Medicare coverage.

Architecture Overview
=====================

One conversational turn runs through a **LangGraph** state machine
(``agent.py``) with three nodes:

1. **model** composes the system prompt from modular fragments selected by
   the conversation's trigger vector and the session state, then calls
   Claude with every capability schema bound.
2. **tools** executes the local capabilities the model asked for and folds
   each result into the ``SessionState``.
3. **finalize** extracts facts from the final text and splits off the
   suggestion chips.

Routing: model → (local calls?) → tools → model (bounded loop) → finalize → END

Key Design Decisions
--------------------
- **Stateless server**: the client sends the full history and the
  serialized ``SessionState`` each turn; the server keeps no conversation
  memory.
- **Resilience**: every outbound call (Claude, NPI registry, PubMed, CMS
  coverage server) goes through one ``ResilienceGovernor`` with a token
  bucket, a circuit breaker and jittered exponential backoff per
  dependency.  Network lookups are cached per data set with a TTL.
- **Fault containment**: capability failures come back to the model as
  ``ToolResult(success=False)``; only model-side failures end a turn, with
  a stable error kind the API maps to a generic message.
- **Prompt as data**: the system prompt is an ordered list of fragment ids
  resolved against a table, so composition is deterministic and testable.

Package Structure
-----------------
- ``coverage_assistant/agent.py``: orchestration graph and ``CoverageAgent``
- ``coverage_assistant/config.py``: configuration from environment variables
- ``coverage_assistant/errors.py``: error taxonomy
- ``coverage_assistant/session.py``: ``SessionState``
- ``coverage_assistant/extraction.py``: text rules and result folders
- ``coverage_assistant/prompts.py``: fragments, triggers and composer
- ``coverage_assistant/suggestions.py``: suggestion extraction
- ``coverage_assistant/server.py``: FastAPI application
- ``coverage_assistant/main.py``: CLI chat interface
- ``coverage_assistant/services/``: governor, cache, metrics, HTTP and model clients
- ``coverage_assistant/knowledge/``: local lookup tables
- ``coverage_assistant/tools/``: LangChain capabilities and the registry
- ``coverage_assistant/api/``: FastAPI routes and Pydantic schemas
"""
