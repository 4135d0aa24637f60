"""
Anthropic messages-API client.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
import structlog

from ..errors import UpstreamError
from .base import (
    BaseLLM,
    ChatRequest,
    ChatResponse,
    Message,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolDefinition,
    Usage,
    decode_tool_arguments,
)
from .sse import iter_sse

logger = structlog.get_logger()

ANTHROPIC_DEFAULT_BASE = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"
ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass
class _PendingBlock:
    """A tool_use content block being assembled from input_json_delta frames."""

    id: str
    name: str
    partial_json: list[str] = field(default_factory=list)


class AnthropicLLM(BaseLLM):
    """Block-content dialect: typed `text` / `tool_use` / `tool_result` blocks."""

    supports_streaming = True

    def __init__(
        self,
        api_key: str,
        model: str = ANTHROPIC_DEFAULT_MODEL,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            api_key,
            model or ANTHROPIC_DEFAULT_MODEL,
            (base_url or ANTHROPIC_DEFAULT_BASE).rstrip("/"),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
        }

    def _extract_system_prompt(self, messages: list[Message]) -> str:
        """Join every system message; the dialect carries them in one field."""
        return "\n\n".join(m.content for m in messages if m.role == "system" and m.content)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to Anthropic format."""
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                # Consecutive tool results belong in the same user turn.
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._resolve_model(request),
            "max_tokens": self._resolve_max_tokens(request),
            "temperature": self._resolve_temperature(request),
            "messages": self._convert_messages(request.messages),
        }
        system = self._extract_system_prompt(request.messages)
        if system:
            body["system"] = system
        if request.tools:
            body["tools"] = self._convert_tools(request.tools)
        if stream:
            body["stream"] = True
        return body

    def _build_request(self, body: dict[str, Any]) -> httpx.Request:
        return self.client.build_request(
            "POST",
            f"{self.base_url}/v1/messages",
            headers=self._headers(),
            json=body,
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a messages request to Claude."""
        body = self._build_body(request, stream=False)
        start = time.monotonic()

        response = await self.retry.execute(lambda: self._build_request(body))
        await self._ensure_ok(response)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise UpstreamError(f"anthropic: invalid response body: {e}", provider=self.name) from e

        text_parts = []
        tool_calls = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.get("id", ""),
                    name=block.get("name", ""),
                    arguments=decode_tool_arguments(block.get("input")),
                ))

        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)

        return ChatResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=data.get("stop_reason") or "",
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            latency_ms=int((time.monotonic() - start) * 1000),
            model=data.get("model", body["model"]),
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream a messages request.

        Frames arrive as `event: <name>` + `data: {json}`. Tool input is
        assembled per content-block index from input_json_delta fragments.
        """
        body = self._build_body(request, stream=True)
        response = await self.retry.execute(lambda: self._build_request(body), stream=True)

        pending: dict[int, _PendingBlock] = {}
        content_parts: list[str] = []
        stop_reason = ""
        input_tokens = 0
        output_tokens = 0

        try:
            await self._ensure_ok(response)

            async for frame in iter_sse(response.aiter_lines()):
                try:
                    data = json.loads(frame.data)
                except json.JSONDecodeError as e:
                    logger.warning("anthropic stream: invalid frame", event=frame.event, error=str(e))
                    continue

                event = frame.event or data.get("type", "")

                if event == "message_start":
                    usage = (data.get("message") or {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens", 0)

                elif event == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        index = data.get("index", 0)
                        pending[index] = _PendingBlock(id=block.get("id", ""), name=block.get("name", ""))
                        yield StreamEvent(
                            type=StreamEventType.TOOL_START,
                            tool=block.get("name", ""),
                            tool_id=block.get("id", ""),
                        )

                elif event == "content_block_delta":
                    delta = data.get("delta") or {}
                    delta_type = delta.get("type")
                    if delta_type == "text_delta" and delta.get("text"):
                        content_parts.append(delta["text"])
                        yield StreamEvent(type=StreamEventType.TOKEN, content=delta["text"])
                    elif delta_type == "thinking_delta" and delta.get("thinking"):
                        yield StreamEvent(type=StreamEventType.THINKING, content=delta["thinking"])
                    elif delta_type == "input_json_delta":
                        block = pending.get(data.get("index", 0))
                        if block is not None:
                            block.partial_json.append(delta.get("partial_json", ""))

                elif event == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                    output_tokens = (data.get("usage") or {}).get("output_tokens", output_tokens)

                elif event == "message_stop":
                    break

                elif event == "error":
                    error = data.get("error") or {}
                    raise UpstreamError(
                        f"anthropic stream error: {error.get('type', '')}: {error.get('message', '')}",
                        provider=self.name,
                    )
        except httpx.HTTPError as e:
            raise UpstreamError(f"anthropic stream interrupted: {e}", provider=self.name) from e
        finally:
            await response.aclose()

        logger.debug(
            "anthropic stream finished",
            model=self.model,
            stop_reason=stop_reason,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        yield StreamEvent(
            type=StreamEventType.DONE,
            content="".join(content_parts),
            tool_calls=[
                ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=decode_tool_arguments("".join(block.partial_json)),
                )
                for _, block in sorted(pending.items())
                if block.name
            ],
        )

    async def healthy(self) -> bool:
        """Verify that an API key is configured."""
        if not self.api_key:
            logger.warning("anthropic: no API key configured")
            return False
        return True
