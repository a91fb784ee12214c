"""
HTTP plumbing shared by the data sources.
"""
import logging
import httpx
from typing import Any, Dict, Optional

from ..cache import ResponseCache

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "Mozilla/5.0"}


def create_client(timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Build the AsyncClient a run shares across all sources."""
    return httpx.AsyncClient(
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        follow_redirects=True,
        transport=transport,
    )


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    cache: Optional[ResponseCache] = None,
    cache_key: Optional[str] = None,
    ttl_seconds: Optional[float] = None,
) -> Any:
    """
    GET a JSON document, consulting the cache first.

    Raises httpx.HTTPError on transport errors or non-2xx status and
    ValueError on a body that is not JSON; callers decide whether that
    excludes a symbol or triggers a fallback.
    """
    if cache is not None and cache_key:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    response = await client.get(
        url,
        params=params,
        headers=headers,
        timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
    )
    response.raise_for_status()
    data = response.json()

    if cache is not None and cache_key:
        cache.set(cache_key, data, ttl_seconds)
    return data
