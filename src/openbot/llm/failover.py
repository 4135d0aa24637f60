"""
Ordered failover across several upstream clients.
"""

import asyncio
from typing import AsyncIterator

import structlog

from ..errors import FailoverExhaustedError
from .base import BaseLLM, ChatRequest, ChatResponse, StreamEvent, StreamEventType

logger = structlog.get_logger()


class FailoverChain(BaseLLM):
    """Tries each client in order and returns the first success.

    Streaming is delegated to the first streaming-capable client without
    retrying on the next one: once a stream has started handing out events
    it cannot be restarted elsewhere.
    """

    def __init__(self, clients: list[BaseLLM]):
        if not clients:
            raise ValueError("FailoverChain needs at least one client")
        self.clients = list(clients)
        self.model = self.clients[0].model

    @property
    def name(self) -> str:
        return "failover(" + "→".join(c.name for c in self.clients) + ")"

    @property
    def models(self) -> list[str]:
        seen: dict[str, None] = {}
        for client in self.clients:
            for model in client.models:
                seen.setdefault(model, None)
        return list(seen)

    @property
    def supports_tool_calling(self) -> bool:  # type: ignore[override]
        return any(c.supports_tool_calling for c in self.clients)

    @property
    def supports_streaming(self) -> bool:  # type: ignore[override]
        return any(c.supports_streaming for c in self.clients)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        errors: list[Exception] = []

        for i, client in enumerate(self.clients):
            try:
                response = await client.chat(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                errors.append(e)
                logger.warning(
                    "Provider failed, trying next",
                    provider=client.name,
                    attempt=i + 1,
                    error=str(e),
                )
                continue

            if i > 0:
                logger.info("Failover used fallback provider", provider=client.name, attempt=i + 1)
            return response

        raise FailoverExhaustedError(
            f"all providers in failover chain failed: {errors[-1]}",
            errors=errors,
        ) from errors[-1]

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        for client in self.clients:
            if client.supports_streaming:
                async for event in client.chat_stream(request):
                    yield event
                return

        response = await self.chat(request)
        if response.content:
            yield StreamEvent(type=StreamEventType.TOKEN, content=response.content)
        yield StreamEvent(
            type=StreamEventType.DONE,
            content=response.content,
            tool_calls=response.tool_calls,
        )

    async def healthy(self) -> bool:
        for client in self.clients:
            if await client.healthy():
                return True
        return False

    async def aclose(self) -> None:
        for client in self.clients:
            await client.aclose()
