"""Shared httpx.AsyncClient for connection pooling.

Every clearinghouse round-trip (eligibility, ERA polling, 835 fetch, claim
status) goes through this client so TLS sessions are reused.  Close it from
the host application's shutdown hook.
"""

import httpx

_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared httpx.AsyncClient, creating it lazily."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(30, connect=10),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            follow_redirects=True,
        )
    return _client


async def close_http_client() -> None:
    """Close the shared client (call from app shutdown hook)."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        _client = None
