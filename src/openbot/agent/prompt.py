"""
System prompt construction.
"""

import platform
from datetime import datetime

from ..llm.base import Message, ToolDefinition

DEFAULT_SYSTEM_PROMPT = """You are OpenBot, a helpful AI assistant with access to tools.

You can use tools to accomplish tasks: search the web, fetch web pages, read and write files in the workspace, and run shell commands. Some tools (like shell commands and file writes) require user approval before execution."""

GUIDELINES = """## Guidelines
1. Be helpful, accurate, and concise
2. Use tools when you need current information or to perform an action
3. Call a tool through the tool-calling interface, not by describing the call
4. If a tool fails, read the error and try a different approach
5. If you're unsure, say so and offer to search for information
6. Format responses clearly using Markdown
7. For shell commands or file writes, explain what you'll do before doing it"""


class PromptBuilder:
    """Builds the system prompt and the message list for one upstream call."""

    def __init__(self, base_prompt: str = "", extra: str = ""):
        self.base_prompt = base_prompt or DEFAULT_SYSTEM_PROMPT
        self.extra = extra

    def build_system_prompt(
        self,
        tools: list[ToolDefinition] | None = None,
        channel: str = "",
        chat_id: str = "",
    ) -> str:
        parts = [self.base_prompt]

        if tools:
            parts.append(
                "## Available Tools\n"
                "You have access to these tools:\n"
                + "\n".join(f"- **{t.name}**: {t.description}" for t in tools)
            )

        parts.append(GUIDELINES)

        now = datetime.now().strftime("%Y-%m-%d %H:%M (%A)")
        runtime = f"## Runtime\nCurrent time: {now}\nSystem: {platform.system()} {platform.machine()}"
        if channel:
            runtime += f"\nChannel: {channel}"
        if chat_id:
            runtime += f"\nChat: {chat_id}"
        parts.append(runtime)

        if self.extra:
            parts.append(self.extra)

        return "\n\n".join(parts)

    def build_messages(
        self,
        history: list[Message],
        current: str,
        channel: str = "",
        chat_id: str = "",
        tools: list[ToolDefinition] | None = None,
    ) -> list[Message]:
        """Return [system, *history, user]. System messages in history are dropped."""
        messages = [Message(role="system", content=self.build_system_prompt(tools, channel, chat_id))]
        messages.extend(m for m in history if m.role != "system")
        messages.append(Message(role="user", content=current))
        return messages
