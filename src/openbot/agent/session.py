"""
Session management for conversations.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from ..interfaces import SessionStore
from ..llm.base import Message

logger = structlog.get_logger()

DEFAULT_TITLE = "New conversation"
MAX_TITLE_LENGTH = 60
MIN_TITLE_CUT = 20


def generate_title(text: str) -> str:
    """Derive a conversation title from the first user message."""
    text = text.strip()
    if not text:
        return DEFAULT_TITLE

    text = text.splitlines()[0]
    if len(text) > MAX_TITLE_LENGTH:
        cut = text.rfind(" ", 0, MAX_TITLE_LENGTH)
        if cut < MIN_TITLE_CUT:
            cut = MAX_TITLE_LENGTH
        text = text[:cut] + "..."
    return text


@dataclass
class Conversation:
    """A conversation held in memory."""

    id: str
    session_key: str
    provider: str = ""
    model: str = ""
    title: str = ""
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemorySessionStore(SessionStore):
    """SessionStore that lives for the lifetime of the process."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._by_key: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_or_create_conversation(self, session_key: str, provider: str = "", model: str = "") -> str:
        async with self._lock:
            conversation_id = self._by_key.get(session_key)
            if conversation_id is not None:
                return conversation_id

            conversation = Conversation(
                id=uuid.uuid4().hex,
                session_key=session_key,
                provider=provider,
                model=model,
            )
            self._conversations[conversation.id] = conversation
            self._by_key[session_key] = conversation.id
            logger.info("Created new conversation", session_key=session_key, conversation_id=conversation.id)
            return conversation.id

    def _get(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"unknown conversation: {conversation_id}")
        return conversation

    async def get_history(self, conversation_id: str, limit: int) -> list[Message]:
        messages = self._get(conversation_id).messages
        if limit > 0:
            messages = messages[-limit:]
        return list(messages)

    async def save_message(self, conversation_id: str, message: Message) -> None:
        conversation = self._get(conversation_id)
        conversation.messages.append(message)
        conversation.updated_at = datetime.now(timezone.utc)

    async def update_title(self, conversation_id: str, title: str) -> None:
        self._get(conversation_id).title = title

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def clear(self, session_key: str) -> None:
        """Forget a session so its next message starts a new conversation."""
        conversation_id = self._by_key.pop(session_key, None)
        if conversation_id is not None:
            self._conversations.pop(conversation_id, None)
            logger.info("Session cleared", session_key=session_key)
