"""
Async HTTP Client Configuration

Provides a shared httpx.AsyncClient with connection pooling and
timeout presets for each external service the pipeline touches.
"""

import httpx
from typing import Optional


# Timeout configurations (in seconds)
class Timeouts:
    """Timeout presets for external services."""
    VERIFY = 10.0       # HEAD reachability probe
    FIRECRAWL = 90.0    # Scrape + LLM extract (waits for page JS)
    OPENAI = 40.0       # Chat completions


# Shared client instance (lazily initialized)
_client: Optional[httpx.AsyncClient] = None


async def get_client() -> httpx.AsyncClient:
    """Get the shared async HTTP client."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            follow_redirects=True,
        )
    return _client


async def close_client():
    """Close the shared client (call on app shutdown)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

