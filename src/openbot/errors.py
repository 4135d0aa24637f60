"""
Exception hierarchy for the agent runtime.

Upstream failures are split by whether retrying can help:
- TransientUpstreamError: network failures, 5xx and 429 after retries ran out
- UpstreamAuthError: any other 4xx (bad key, bad request), never retried
- FailoverExhaustedError: every client in a failover chain failed

Tool failures and security denials are reported back to the model as text,
so ToolExecutionError never escapes a turn. Cancellation is plain
asyncio.CancelledError.
"""


class OpenBotError(Exception):
    """Base class for all runtime errors."""


class UpstreamError(OpenBotError):
    """An upstream language-model call failed."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Network error, 5xx or 429 that persisted through every retry."""


class UpstreamAuthError(UpstreamError):
    """Non-retryable client error (401, 403, 400, ...)."""


class FailoverExhaustedError(UpstreamError):
    """All clients in a failover chain failed."""

    def __init__(self, message: str, errors: list[Exception]):
        super().__init__(message, provider="failover")
        self.errors = errors


class ToolExecutionError(OpenBotError):
    """A tool could not be executed."""


class AgentError(OpenBotError):
    """A turn could not produce a reply."""
