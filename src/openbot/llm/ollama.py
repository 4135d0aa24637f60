"""
Ollama native chat client (local or hosted).
"""

import json
import time
from typing import Any

import httpx
import structlog

from ..errors import UpstreamError
from .base import (
    BaseLLM,
    ChatRequest,
    ChatResponse,
    Message,
    ToolCall,
    ToolDefinition,
    Usage,
    decode_tool_arguments,
)

logger = structlog.get_logger()

OLLAMA_DEFAULT_BASE = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "llama3.1:8b"


class OllamaLLM(BaseLLM):
    """Local-chat dialect, close to chat completions.

    Tool-call arguments come back either as an object or as a JSON string.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = OLLAMA_DEFAULT_MODEL,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            api_key,
            model or OLLAMA_DEFAULT_MODEL,
            (base_url or OLLAMA_DEFAULT_BASE).rstrip("/"),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def models(self) -> list[str]:
        known = ["llama3.1:8b", "llama3.1:70b", "llama3.2:3b", "mistral", "qwen2.5"]
        return known if self.model in known else [self.model, *known]

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        converted = []
        for msg in messages:
            item: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_call_id:
                item["tool_call_id"] = msg.tool_call_id
                item["name"] = msg.tool_name
            if msg.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ]
            converted.append(item)
        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
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

    def _build_request(self, body: dict[str, Any]) -> httpx.Request:
        return self.client.build_request(
            "POST",
            f"{self.base_url}/api/chat",
            headers=self._headers(),
            json=body,
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a non-streaming /api/chat request."""
        body: dict[str, Any] = {
            "model": self._resolve_model(request),
            "messages": self._convert_messages(request.messages),
            "stream": False,
            "options": {
                "temperature": self._resolve_temperature(request),
                "num_predict": self._resolve_max_tokens(request),
            },
        }
        if request.tools:
            body["tools"] = self._convert_tools(request.tools)

        start = time.monotonic()
        response = await self.retry.execute(lambda: self._build_request(body))
        await self._ensure_ok(response)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise UpstreamError(f"ollama: invalid response body: {e}", provider=self.name) from e

        message = data.get("message") or {}
        tool_calls = []
        for i, tc in enumerate(message.get("tool_calls") or []):
            function = tc.get("function") or {}
            tool_calls.append(ToolCall(
                id=tc.get("id") or f"ollama_call_{i}",
                name=function.get("name", ""),
                arguments=decode_tool_arguments(function.get("arguments")),
            ))

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=data.get("done_reason") or "",
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            latency_ms=int((time.monotonic() - start) * 1000),
            model=data.get("model", body["model"]),
        )

    async def healthy(self) -> bool:
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning("ollama not reachable", error=str(e))
            return False
        return response.status_code == 200
