"""
OpenAI chat-completions client (also works with OpenRouter and compatible APIs).
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

OPENAI_DEFAULT_BASE = "https://api.openai.com/v1"
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class _PendingToolCall:
    """Tool-call fragments collected from stream deltas for one index."""

    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class OpenAILLM(BaseLLM):
    """Chat-completions dialect: `tools[].function`, `tool_calls[].function.arguments`."""

    supports_streaming = True

    def __init__(
        self,
        api_key: str,
        model: str = OPENAI_DEFAULT_MODEL,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            api_key,
            model or OPENAI_DEFAULT_MODEL,
            (base_url or OPENAI_DEFAULT_BASE).rstrip("/"),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "openai"

    @property
    def models(self) -> list[str]:
        known = ["gpt-4o", "gpt-4o-mini", "gpt-4.1", "o3-mini"]
        return known if self.model in known else [self.model, *known]

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == "tool":
                item: dict[str, Any] = {
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                }
                if msg.tool_name:
                    item["name"] = msg.tool_name
                converted.append(item)
            elif msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                })
            else:
                converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._resolve_model(request),
            "messages": self._convert_messages(request.messages),
            "max_tokens": self._resolve_max_tokens(request),
            "temperature": self._resolve_temperature(request),
            "stream": stream,
        }
        if request.tools:
            body["tools"] = self._convert_tools(request.tools)
        return body

    def _build_request(self, body: dict[str, Any]) -> httpx.Request:
        return self.client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json=body,
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a chat completion request."""
        body = self._build_body(request, stream=False)
        start = time.monotonic()

        response = await self.retry.execute(lambda: self._build_request(body))
        await self._ensure_ok(response)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise UpstreamError(f"openai: invalid response body: {e}", provider=self.name) from e

        choices = data.get("choices") or []
        usage = data.get("usage") or {}
        out = ChatResponse(
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            model=data.get("model", body["model"]),
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        if not choices:
            out.finish_reason = "stop"
            return out

        choice = choices[0]
        message = choice.get("message") or {}
        out.content = message.get("content") or ""
        out.finish_reason = choice.get("finish_reason") or ""

        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            out.tool_calls.append(ToolCall(
                id=tc.get("id", ""),
                name=function.get("name", ""),
                arguments=decode_tool_arguments(function.get("arguments")),
            ))

        return out

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream a chat completion.

        Tool-call deltas are correlated by their `index` field; the final
        DONE event carries the finished calls.
        """
        body = self._build_body(request, stream=True)
        response = await self.retry.execute(lambda: self._build_request(body), stream=True)

        pending: dict[int, _PendingToolCall] = {}
        content_parts: list[str] = []
        finish_reason = ""

        try:
            await self._ensure_ok(response)

            async for frame in iter_sse(response.aiter_lines()):
                if frame.data == "[DONE]":
                    break

                try:
                    chunk = json.loads(frame.data)
                except json.JSONDecodeError as e:
                    logger.warning("openai stream: invalid chunk", error=str(e))
                    continue

                choices = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                finish_reason = choice.get("finish_reason") or finish_reason
                delta = choice.get("delta") or {}

                text = delta.get("content")
                if text:
                    content_parts.append(text)
                    yield StreamEvent(type=StreamEventType.TOKEN, content=text)

                for tc in delta.get("tool_calls") or []:
                    index = tc.get("index", 0)
                    pc = pending.setdefault(index, _PendingToolCall())
                    if tc.get("id"):
                        pc.id = tc["id"]
                    function = tc.get("function") or {}
                    fragment_name = function.get("name")
                    if fragment_name and not pc.name:
                        pc.name = fragment_name
                        yield StreamEvent(
                            type=StreamEventType.TOOL_START,
                            tool=fragment_name,
                            tool_id=pc.id,
                        )
                    arguments = function.get("arguments")
                    if isinstance(arguments, str):
                        pc.arguments.append(arguments)
                    elif isinstance(arguments, dict):
                        pc.arguments.append(json.dumps(arguments))
        except httpx.HTTPError as e:
            raise UpstreamError(f"openai stream interrupted: {e}", provider=self.name) from e
        finally:
            await response.aclose()

        logger.debug("openai stream finished", finish_reason=finish_reason, tool_calls=len(pending))
        yield StreamEvent(
            type=StreamEventType.DONE,
            content="".join(content_parts),
            tool_calls=self._finalize(pending),
        )

    def _finalize(self, pending: dict[int, _PendingToolCall]) -> list[ToolCall]:
        calls = []
        for index in sorted(pending):
            pc = pending[index]
            if not pc.name:
                continue
            calls.append(ToolCall(
                id=pc.id or f"call_{index}",
                name=pc.name,
                arguments=decode_tool_arguments("".join(pc.arguments)),
            ))
        return calls

    async def healthy(self) -> bool:
        """Check connectivity and API key validity."""
        try:
            response = await self.client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.warning("openai not reachable", error=str(e))
            return False

        if response.status_code == 401:
            logger.warning("openai: invalid API key")
            return False
        return response.status_code == 200
