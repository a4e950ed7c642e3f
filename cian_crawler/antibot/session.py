"""Shared HTTP session used by every request of one crawl."""
from __future__ import annotations

from typing import Dict, Optional

import httpx

CIAN_API_URL = "https://api.cian.ru"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 20.0
DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Origin": "https://www.cian.ru",
    "Referer": "https://www.cian.ru/",
}


def create_client(
    *,
    base_url: str = CIAN_API_URL,
    timeout: float = DEFAULT_TIMEOUT,
    proxy: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    max_connections: int = 100,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build the async client whose cookie jar carries the solved challenge.

    Redirects are never followed: a ``302`` from the API is the anti-bot
    signal and must reach the challenge gate. Without an explicit ``proxy``
    the usual ``HTTP(S)_PROXY`` environment variables apply.
    """
    merged = dict(DEFAULT_HEADERS)
    merged.update(headers or {})
    return httpx.AsyncClient(
        base_url=base_url,
        headers=merged,
        timeout=httpx.Timeout(timeout),
        follow_redirects=False,
        proxy=proxy,
        limits=httpx.Limits(max_connections=max_connections),
        transport=transport,
    )
