"""
In-process message bus between channels and the agent loop.

Channels publish inbound messages and register a handler per channel name
for outbound ones. The agent loop subscribes to the inbound side and sends
replies and stream events to the outbound side.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable

import structlog

from ..interfaces import InboundBus, InboundMessage, OutboundMessage, OutboundSink

logger = structlog.get_logger()

OutboundHandler = Callable[[OutboundMessage], Awaitable[None]]

PUBLISH_TIMEOUT = 10.0

_CLOSED = object()


class InMemoryBus(InboundBus, OutboundSink):
    """asyncio.Queue backed bus.

    `publish` waits up to PUBLISH_TIMEOUT seconds when the queue is full and
    drops the message after that. There is a single subscriber.
    """

    def __init__(self, buffer_size: int = 100, publish_timeout: float = PUBLISH_TIMEOUT):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size if buffer_size > 0 else 100)
        self._handlers: dict[str, OutboundHandler] = {}
        self._closed = False
        self.publish_timeout = publish_timeout

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, message: InboundMessage) -> bool:
        """Queue an inbound message. Returns False if it was dropped."""
        if self._closed:
            logger.warning("Attempted to publish to closed bus", channel=message.channel)
            return False

        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning("Inbound bus full, waiting", channel=message.channel, sender=message.sender_id)

        try:
            await asyncio.wait_for(self._queue.put(message), timeout=self.publish_timeout)
        except asyncio.TimeoutError:
            logger.error("Message dropped: bus full", channel=message.channel, sender=message.sender_id)
            return False
        return True

    async def subscribe(self) -> AsyncIterator[InboundMessage]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def on_outbound(self, channel: str, handler: OutboundHandler) -> None:
        """Register the delivery handler for a channel."""
        self._handlers[channel] = handler

    async def send(self, message: OutboundMessage) -> None:
        handler = self._handlers.get(message.channel)
        if handler is None:
            logger.warning("No handler registered for channel", channel=message.channel)
            return
        await handler(message)

    async def close(self) -> None:
        """Stop accepting messages; the subscriber ends after draining the queue.

        Never blocks. The sentinel only wakes a subscriber parked on an empty
        queue; when the queue is full the subscriber sees the closed flag
        once it has drained it.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass
