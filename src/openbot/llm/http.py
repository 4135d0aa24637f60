"""
Pooled HTTP transport shared by upstream clients.
"""

import httpx

DEFAULT_TIMEOUT = 120.0


def create_http_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Create an AsyncClient tuned for many long-lived upstream calls.

    Build one per process and pass it to every client so they share the
    connection pool.
    """
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT

    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=10.0),
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=90.0,
        ),
    )
