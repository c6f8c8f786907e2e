"""Tests for the tool registry's lookup, schemas and fault containment."""

from __future__ import annotations

import json

import pytest
from langchain_core.tools import tool

from coverage_assistant.errors import (
    CircuitOpenError,
    RateLimitError,
    RetryableTransportError,
)
from coverage_assistant.tools.coding import search_cpt
from coverage_assistant.tools.registry import ToolRegistry, ToolResult, anthropic_schema, unavailable


@tool
def echo(text: str) -> ToolResult:
    """Echo the text back.

    Args:
        text: Anything.
    """
    return ToolResult.ok({"text": text})


@tool
def explode(text: str) -> ToolResult:
    """Always raises.

    Args:
        text: Ignored.
    """
    raise RuntimeError("kaboom")


@tool
def plain(text: str) -> dict:
    """Returns a bare dict.

    Args:
        text: Anything.
    """
    return {"length": len(text)}


class TestToolResult:
    def test_content_omits_none(self):
        assert json.loads(ToolResult.fail("nope").to_content()) == {"success": False, "error": "nope"}

    def test_ok_round_trips_data(self):
        assert json.loads(ToolResult.ok({"a": 1}).to_content()) == {"success": True, "data": {"a": 1}}


class TestToolRegistry:
    def test_execute_known_capability(self, mock_metrics):
        registry = ToolRegistry([echo], metrics=mock_metrics)
        result = registry.execute("echo", {"text": "hi"})
        assert result.success
        assert result.data == {"text": "hi"}
        mock_metrics.record_capability.assert_called_once_with("echo", success=True)

    def test_unknown_capability_is_a_failed_result(self, mock_metrics):
        registry = ToolRegistry([echo], metrics=mock_metrics)
        result = registry.execute("teleport", {})
        assert result.success is False
        assert "teleport" in result.error
        mock_metrics.record_capability.assert_called_once_with("teleport", success=False)

    def test_executor_exception_is_contained(self, mock_metrics):
        registry = ToolRegistry([explode], metrics=mock_metrics)
        result = registry.execute("explode", {"text": "x"})
        assert result.success is False
        assert "kaboom" in result.error
        mock_metrics.record_capability.assert_called_once_with("explode", success=False)

    def test_bad_arguments_are_contained(self, mock_metrics):
        registry = ToolRegistry([echo], metrics=mock_metrics)
        assert registry.execute("echo", {}).success is False

    def test_plain_return_wrapped(self, mock_metrics):
        registry = ToolRegistry([plain], metrics=mock_metrics)
        result = registry.execute("plain", {"text": "abc"})
        assert result == ToolResult.ok({"length": 3})

    def test_duplicate_registration_rejected(self, mock_metrics):
        registry = ToolRegistry([echo], metrics=mock_metrics)
        with pytest.raises(ValueError):
            registry.register(echo)

    def test_membership_and_names(self, mock_metrics):
        registry = ToolRegistry([echo, plain], metrics=mock_metrics)
        assert "echo" in registry
        assert "missing" not in registry
        assert registry.names == ["echo", "plain"]
        assert len(registry) == 2


class TestSchemas:
    def test_anthropic_shape(self):
        schema = anthropic_schema(search_cpt)
        assert schema["name"] == "search_cpt"
        assert schema["description"].startswith("Find CPT/HCPCS procedure codes")
        assert "query" in schema["input_schema"]["properties"]
        assert schema["input_schema"]["required"] == ["query"]

    def test_registry_schemas(self, mock_metrics):
        registry = ToolRegistry([echo, search_cpt], metrics=mock_metrics)
        assert [s["name"] for s in registry.schemas()] == ["echo", "search_cpt"]
        assert registry.schema("nope") is None


class TestUnavailable:
    def test_circuit_open_mentions_wait(self):
        result = unavailable("PubMed", CircuitOpenError("pubmed", 42.4))
        assert result.success is False
        assert "about 42 seconds" in result.error

    def test_rate_limit_rounds_up_to_one(self):
        result = unavailable("PubMed", RateLimitError("pubmed", 0.1))
        assert "about 1 seconds" in result.error

    def test_transport_error(self):
        result = unavailable("PubMed", RetryableTransportError("boom", dependency="pubmed"))
        assert result.error == "PubMed could not be reached. Continue without it."
