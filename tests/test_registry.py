"""
Tests for tool plumbing and the registry.
"""

import asyncio
from typing import Annotated, Any

import pytest

from openbot.errors import ToolExecutionError
from openbot.tools import BaseTool, ToolRegistry, tool, validate_arguments


class EchoTool(BaseTool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the text back"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
            "additionalProperties": False,
        }

    async def run(self, text: str) -> str:
        return text


@tool
async def web_search(
    query: Annotated[str, "Search query"],
    limit: Annotated[int, "Max results"] = 5,
    safe: bool = True,
) -> str:
    """Search the web."""
    return f"{query}:{limit}:{safe}"


@tool(name="save")
async def save_file(path: str) -> str:
    raise OSError("disk full")


def test_function_tool_schema():
    """Test the JSON schema built from the function signature."""
    definition = web_search.to_definition()

    assert definition.name == "web_search"
    assert definition.description == "Search the web."
    assert definition.parameters["required"] == ["query"]
    assert definition.parameters["properties"]["query"] == {"type": "string", "description": "Search query"}
    assert definition.parameters["properties"]["limit"]["type"] == "integer"
    assert definition.parameters["properties"]["safe"] == {"type": "boolean"}


def test_validate_arguments_collects_problems():
    """Test that every problem is reported in one error."""
    schema = {
        "type": "object",
        "properties": {"mode": {"type": "string", "enum": ["fast", "deep"]}, "count": {"type": "integer"}},
        "required": ["query"],
    }

    with pytest.raises(ToolExecutionError) as exc_info:
        validate_arguments("search", schema, {"mode": "slow", "count": True})

    message = str(exc_info.value)
    assert message.startswith("invalid arguments for search")
    assert "missing required argument(s): query" in message
    assert "mode must be one of" in message
    assert "count must be integer, got boolean" in message


def test_validate_arguments_accepts_ints_as_numbers():
    schema = {"type": "object", "properties": {"ratio": {"type": "number"}}}

    validate_arguments("scale", schema, {"ratio": 2})
    validate_arguments("scale", schema, {"ratio": None})


def test_register_and_list():
    """Test registration bookkeeping."""
    registry = ToolRegistry([EchoTool(), web_search])

    assert registry.list_tools() == ["echo", "web_search"]
    assert registry.list_definitions()[0].description == "Echo the text back"

    registry.unregister("echo")
    assert registry.get("echo") is None
    assert [d.name for d in registry.list_definitions()] == ["web_search"]


@pytest.mark.asyncio
async def test_execute_returns_output():
    """Test a successful execution."""
    registry = ToolRegistry([EchoTool(), web_search])

    assert await registry.execute("echo", {"text": "hello"}) == "hello"
    assert await registry.execute("web_search", {"query": "python", "limit": 2}) == "python:2:True"


@pytest.mark.asyncio
async def test_execute_unknown_tool():
    """Test that unknown tools raise."""
    with pytest.raises(ToolExecutionError, match="not found"):
        await ToolRegistry().execute("missing", {})


@pytest.mark.asyncio
async def test_execute_bad_arguments():
    """Test that arguments failing the schema raise before the tool runs."""
    registry = ToolRegistry([EchoTool()])

    with pytest.raises(ToolExecutionError, match="unexpected argument\\(s\\): wrong"):
        await registry.execute("echo", {"text": "hi", "wrong": 1})


@pytest.mark.asyncio
async def test_execute_wraps_tool_exception():
    """Test that an exception raised by a tool becomes ToolExecutionError."""
    registry = ToolRegistry([save_file])

    with pytest.raises(ToolExecutionError, match="save failed: disk full"):
        await registry.execute("save", {"path": "/tmp/x"})


@pytest.mark.asyncio
async def test_execute_propagates_cancellation():
    """Test that cancellation is not converted into a tool error."""

    @tool
    async def slow() -> str:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await ToolRegistry([slow]).execute("slow", {})
