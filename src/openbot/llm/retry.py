"""
Retry with exponential backoff for a single upstream HTTP exchange.
"""

import asyncio
import random
from typing import Callable

import httpx
import structlog

from ..errors import TransientUpstreamError

logger = structlog.get_logger()

DEFAULT_MAX_RETRIES = 3


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Delay before retry `attempt`: attempt² plus up to half of that as jitter."""
    base = base_delay * attempt * attempt
    return base + random.uniform(0, base / 2)


class RetryExecutor:
    """Sends requests, retrying connection failures, 5xx and 429.

    Any other response, including 4xx, is returned to the caller on the
    first attempt.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = 1.0,
        provider: str = "",
    ):
        self.client = client
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.provider = provider

    async def execute(
        self,
        build_request: Callable[[], httpx.Request],
        stream: bool = False,
    ) -> httpx.Response:
        """Send the request built by `build_request`, retrying transient failures.

        `build_request` is called once per attempt. With `stream=True` the
        body is left unread and the caller must close the response.
        """
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = backoff_delay(attempt, self.base_delay)
                logger.warning(
                    "Retrying request",
                    provider=self.provider,
                    attempt=attempt + 1,
                    backoff=round(delay, 2),
                )
                await asyncio.sleep(delay)

            request = build_request()
            try:
                response = await self.client.send(request, stream=stream)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Request failed",
                    provider=self.provider,
                    attempt=attempt + 1,
                    error=str(e) or type(e).__name__,
                )
                continue

            if response.status_code >= 500 or response.status_code == 429:
                await response.aread()
                await response.aclose()
                last_error = TransientUpstreamError(
                    f"HTTP {response.status_code}: {response.text[:500]}",
                    provider=self.provider,
                    status_code=response.status_code,
                )
                logger.warning(
                    "Server error",
                    provider=self.provider,
                    attempt=attempt + 1,
                    status=response.status_code,
                )
                continue

            return response

        status_code = getattr(last_error, "status_code", None)
        raise TransientUpstreamError(
            f"{self.provider or 'upstream'} request failed after "
            f"{self.max_retries} retries: {last_error}",
            provider=self.provider,
            status_code=status_code,
        ) from last_error
