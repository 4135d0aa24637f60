"""
Allow/deny rules for which tools the model may see and call.
"""

from ..llm.base import ToolDefinition


class ToolFilter:
    """Filters tool definitions and tool calls by name.

    A non-empty allow list admits only the tools it names. The deny list
    always wins over the allow list.
    """

    def __init__(self, allowed: list[str] | None = None, denied: list[str] | None = None):
        self.allowed = frozenset(allowed or ())
        self.denied = frozenset(denied or ())

    @property
    def is_empty(self) -> bool:
        return not self.allowed and not self.denied

    def is_allowed(self, name: str) -> bool:
        if name in self.denied:
            return False
        if self.allowed:
            return name in self.allowed
        return True

    def filter_definitions(self, definitions: list[ToolDefinition]) -> list[ToolDefinition]:
        if self.is_empty:
            return definitions
        return [d for d in definitions if self.is_allowed(d.name)]
