"""
Collaborator interfaces the agent loop depends on.

Concrete tools, storage and delivery channels live outside this package;
they plug in by implementing these classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator

from .llm.base import Message, StreamEvent, ToolDefinition


class SecurityAction(str, Enum):
    """Decision of a security policy for one tool invocation."""

    ALLOW = "allow"
    BLOCK = "block"
    CONFIRM = "confirm"


@dataclass
class InboundMessage:
    """A message arriving from a channel."""

    content: str
    channel: str
    chat_id: str
    sender_id: str = "user"
    provider: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def session_key(self) -> str:
        return f"{self.channel}:{self.chat_id}"


@dataclass
class OutboundMessage:
    """A reply or stream event going back to a channel."""

    channel: str
    chat_id: str
    content: str = ""
    format: str = "markdown"
    stream_event: StreamEvent | None = None


class ToolExecutor(ABC):
    """Executes named tools."""

    @abstractmethod
    async def execute(self, name: str, arguments: dict) -> str:
        """Run a tool and return its text output. Raises on failure."""

    @abstractmethod
    def list_definitions(self) -> list[ToolDefinition]:
        """Definitions of every tool the model may call."""


class SecurityPolicy(ABC):
    """Gates tool invocations."""

    @abstractmethod
    async def check(self, tool_name: str, command: str) -> SecurityAction:
        """Decide whether `command` may run through `tool_name`."""

    @abstractmethod
    async def request_confirmation(self, tool_name: str, command: str) -> bool:
        """Ask a human; True means go ahead."""


class SessionStore(ABC):
    """Conversation persistence."""

    @abstractmethod
    async def get_or_create_conversation(
        self, session_key: str, provider: str = "", model: str = ""
    ) -> str:
        """Return the id of the active conversation for `session_key`."""

    @abstractmethod
    async def get_history(self, conversation_id: str, limit: int) -> list[Message]:
        """Most recent `limit` messages, oldest first."""

    @abstractmethod
    async def save_message(self, conversation_id: str, message: Message) -> None:
        """Append a message to the conversation."""

    @abstractmethod
    async def update_title(self, conversation_id: str, title: str) -> None:
        """Set the conversation title."""


class InboundBus(ABC):
    """Source of inbound messages."""

    @abstractmethod
    def subscribe(self) -> AsyncIterator[InboundMessage]:
        """Iterate inbound messages until the bus closes."""


class OutboundSink(ABC):
    """Destination for replies and stream events."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        """Deliver one outbound message."""
