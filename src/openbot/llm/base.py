"""
Base classes for upstream LLM clients.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Literal

import httpx
import structlog

from ..errors import UpstreamAuthError
from .http import create_http_client
from .retry import RetryExecutor

logger = structlog.get_logger()

DEFAULT_MAX_TOKENS = 4096
DEFAULT_HTTP_TIMEOUT = 120.0


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A message in the conversation. Never mutated after it is appended."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""
    tool_name: str = ""


@dataclass
class Usage:
    """Token accounting reported by the upstream."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatRequest:
    """A single upstream call."""

    messages: list[Message]
    tools: list[ToolDefinition] = field(default_factory=list)
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    stream: bool = False


@dataclass
class ChatResponse:
    """Response from an LLM."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0
    model: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class StreamEventType(str, Enum):
    """Kinds of streaming events."""

    TOKEN = "token"
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamEvent:
    """One event of a streamed response.

    Only the terminal DONE event carries finalized tool calls.
    """

    type: StreamEventType
    content: str = ""
    tool: str = ""
    tool_id: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


def decode_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments that may arrive as an object or a JSON string.

    Step one accepts an already-decoded object. Step two treats a string as
    JSON text; some servers wrap the object in one extra level of string
    encoding, so a decoded string is decoded once more. Anything that does
    not end up as an object yields an empty dict.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}

    try:
        decoded = json.loads(raw)
        if isinstance(decoded, str):
            decoded = json.loads(decoded)
    except json.JSONDecodeError as e:
        logger.warning("Invalid tool arguments JSON", error=str(e), raw=raw[:200])
        return {}

    if not isinstance(decoded, dict):
        logger.warning("Tool arguments are not an object", raw=raw[:200])
        return {}
    return decoded


class BaseLLM(ABC):
    """Base class for upstream LLM clients.

    Every client speaks one wire dialect and normalizes it to the common
    Message / ToolCall model. All HTTP exchanges go through a RetryExecutor.
    """

    supports_streaming: bool = False

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._owns_client = http_client is None
        self.client = http_client or create_http_client(DEFAULT_HTTP_TIMEOUT)
        self.retry = RetryExecutor(
            self.client,
            max_retries=max_retries,
            base_delay=retry_base_delay,
            provider=self.name,
        )

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the provider name."""

    @property
    def models(self) -> list[str]:
        """Models this client is known to serve."""
        return [self.model] if self.model else []

    @property
    def supports_tool_calling(self) -> bool:
        return True

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send one request and return the normalized response."""

    def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream a response as StreamEvents.

        Implementations are async generators: finishing the generator, by
        returning or raising, is the single close of the stream.
        """
        raise NotImplementedError(f"{self.name} does not support streaming")

    @abstractmethod
    async def healthy(self) -> bool:
        """Cheap reachability / credential check."""

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    def _resolve_model(self, request: ChatRequest) -> str:
        return request.model or self.model

    def _resolve_max_tokens(self, request: ChatRequest) -> int:
        return request.max_tokens if request.max_tokens > 0 else self.max_tokens

    def _resolve_temperature(self, request: ChatRequest) -> float:
        return request.temperature if request.temperature > 0 else self.temperature

    async def _ensure_ok(self, response: httpx.Response) -> None:
        """Turn a non-2xx response the retry layer handed back into an error."""
        if response.is_success:
            return
        await response.aread()
        body = response.text[:500]
        await response.aclose()
        raise UpstreamAuthError(
            f"{self.name} {response.status_code}: {body}",
            provider=self.name,
            status_code=response.status_code,
        )
