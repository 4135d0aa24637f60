"""
Agent module - the tool-calling loop and its helpers.

Includes:
- Agent: Message processing with LLM + tools
- RateLimiter: Token bucket shared by all turns
- ContextCompactor: Summarization of old context
- extract_tool_calls: Recovery of tool calls written as text
- InMemorySessionStore: Process-lifetime conversation storage
- ToolFilter: Allow/deny rules for tools
"""

from .compaction import ContextCompactor, estimate_tokens
from .core import Agent, extract_security_command
from .parser import extract_tool_calls, normalize_tool_name, sanitize_json_escapes
from .prompt import PromptBuilder
from .ratelimit import RateLimiter
from .session import InMemorySessionStore, generate_title
from .toolfilter import ToolFilter

__all__ = [
    "Agent",
    "extract_security_command",
    "ContextCompactor",
    "estimate_tokens",
    "extract_tool_calls",
    "normalize_tool_name",
    "sanitize_json_escapes",
    "PromptBuilder",
    "RateLimiter",
    "InMemorySessionStore",
    "generate_title",
    "ToolFilter",
]
