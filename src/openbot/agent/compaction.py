"""
Conversation Compaction - keeps the context under a token budget.

When the estimated size of a conversation goes over the budget, the older
middle of the conversation is replaced with an LLM-generated summary:

- The system prompt (first message) is always kept verbatim
- The most recent messages are always kept verbatim
- Everything in between is summarized by one upstream call
- If summarization fails the conversation is returned unchanged, so
  compaction never blocks a turn
"""

import asyncio

import structlog

from ..llm.base import BaseLLM, ChatRequest, Message
from .ratelimit import RateLimiter

logger = structlog.get_logger()

# Rough words-per-token ratio for English text
WORDS_PER_TOKEN = 0.75

DEFAULT_MAX_TOKENS = 4096
DEFAULT_MIN_RECENT = 4

SUMMARY_PREFIX = "[Conversation Summary]\n"
SUMMARY_MAX_TOKENS = 512
SUMMARY_TEMPERATURE = 0.3

SUMMARIZER_PROMPT = """You are a conversation summarizer. Summarize the conversation below into a concise context block.
Preserve:
- Specific facts, names, dates, and numbers
- The user's requests and what was accomplished
- Tool results and their outcomes
- Open questions or tasks still in progress

Keep the summary under 200 words. Respond with the summary only."""


def _estimate_text(text: str) -> int:
    words = len(text.split())
    if words == 0:
        return 0
    return max(1, int(words / WORDS_PER_TOKEN))


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count for a list of messages."""
    total = 0
    for msg in messages:
        total += _estimate_text(msg.content)
        for call in msg.tool_calls:
            for value in call.arguments.values():
                total += _estimate_text(str(value))
    return total


def is_summary(message: Message) -> bool:
    return message.role == "system" and message.content.startswith(SUMMARY_PREFIX)


def _format_transcript(messages: list[Message]) -> str:
    lines = []
    for msg in messages:
        line = f"{msg.role}: {msg.content}"
        if msg.tool_calls:
            names = ", ".join(call.name for call in msg.tool_calls)
            line += f" [called tools: {names}]"
        lines.append(line)
    return "\n".join(lines)


class ContextCompactor:
    """Summarizes old messages once a conversation grows past `max_tokens`.

    The summarization call waits on `rate_limiter` when one is given, so it
    counts against the same upstream budget as the turns themselves.
    """

    def __init__(
        self,
        llm: BaseLLM,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        min_recent: int = DEFAULT_MIN_RECENT,
        rate_limiter: RateLimiter | None = None,
    ):
        self.llm = llm
        self.rate_limiter = rate_limiter
        self.max_tokens = max_tokens if max_tokens > 0 else DEFAULT_MAX_TOKENS
        self.min_recent = min_recent if min_recent > 0 else DEFAULT_MIN_RECENT

    def needs_compaction(self, messages: list[Message]) -> bool:
        if len(messages) <= self.min_recent + 1:
            return False
        return estimate_tokens(messages) > self.max_tokens

    def _cutoff(self, messages: list[Message]) -> int:
        cutoff = max(1, len(messages) - self.min_recent)
        # A tool result must stay next to the assistant message that called it.
        while cutoff > 1 and messages[cutoff].role == "tool":
            cutoff -= 1
        return cutoff

    async def compact(self, messages: list[Message]) -> list[Message]:
        """Return `messages`, compacted if it is over budget.

        The result is either the input itself or
        [system, summary, *recent]. Cancellation propagates; every other
        failure leaves the input unchanged.
        """
        if not self.needs_compaction(messages):
            return messages

        cutoff = self._cutoff(messages)
        older = messages[1:cutoff]
        if not older:
            return messages
        if all(is_summary(m) for m in older):
            # Nothing but an earlier summary precedes the recent messages.
            logger.debug("Compaction skipped, nothing new to summarize", recent=len(messages) - cutoff)
            return messages

        logger.info(
            "Starting conversation compaction",
            message_count=len(messages),
            summarized=len(older),
            estimated_tokens=estimate_tokens(messages),
            budget=self.max_tokens,
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.wait()

        try:
            summary = await self._summarize(older)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Compaction summarization failed, keeping full context", error=str(e))
            return messages

        compacted = [
            messages[0],
            Message(role="system", content=SUMMARY_PREFIX + summary),
            *messages[cutoff:],
        ]

        logger.info(
            "Compaction complete",
            original=len(messages),
            compacted=len(compacted),
            tokens_after=estimate_tokens(compacted),
        )
        return compacted

    async def _summarize(self, messages: list[Message]) -> str:
        """Use the LLM to generate a conversation summary."""
        request = ChatRequest(
            messages=[
                Message(role="system", content=SUMMARIZER_PROMPT),
                Message(role="user", content=_format_transcript(messages)),
            ],
            max_tokens=SUMMARY_MAX_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
        )
        response = await self.llm.chat(request)
        return response.content.strip()
