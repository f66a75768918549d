"""Shared HTTP client for provider and AI backend calls."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Global HTTP client (for connection pooling)
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client(timeout: float = 30) -> httpx.AsyncClient:
    """Get or create global HTTP client."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            headers={"User-Agent": "G.AI.NS/1.0"},
        )
        logger.debug("Created shared HTTP client (timeout=%ss)", timeout)
    return _http_client


async def close_http_client(client: Optional[httpx.AsyncClient] = None) -> None:
    """Close the given client, or the global one when none is passed."""
    global _http_client
    if client is not None and client is not _http_client:
        await client.aclose()
        return
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
