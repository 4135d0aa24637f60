"""
Tool registry: the default ToolExecutor.
"""

import asyncio
from typing import Any

import structlog

from ..errors import ToolExecutionError
from ..interfaces import ToolExecutor
from ..llm.base import ToolDefinition
from .base import BaseTool

logger = structlog.get_logger()


class ToolRegistry(ToolExecutor):
    """Registry for managing tools."""

    def __init__(self, tools: list[BaseTool] | None = None):
        self._tools: dict[str, BaseTool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: BaseTool) -> None:
        """Register a tool, replacing any tool with the same name."""
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        if self._tools.pop(name, None) is not None:
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def list_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [t.to_definition() for t in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Validate the arguments and run the tool.

        Every failure (unknown tool, invalid arguments, an exception raised
        by the tool) surfaces as ToolExecutionError. Cancellation propagates.
        """
        t = self.get(name)
        if t is None:
            raise ToolExecutionError(f"Tool '{name}' not found")

        t.validate(arguments)

        try:
            output = await t.run(**arguments)
        except asyncio.CancelledError:
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"{name} failed: {e}") from e

        logger.debug("Tool executed", tool_name=name, output_len=len(output))
        return output
