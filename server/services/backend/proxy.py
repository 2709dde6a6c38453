"""Helpers shared by the backend proxy routers."""

import hashlib
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Request, Response

from core.cache import CacheManager
from .models import ApiResponse


def forward_headers(request: Request) -> Dict[str, str]:
    """Headers relayed to the backend: the browser's session cookie only."""
    cookies = request.headers.get("cookie")
    return {"Cookie": cookies} if cookies else {}


def session_scope(request: Request) -> str:
    """Short fingerprint of the caller's cookies for per-session cache keys."""
    cookies = request.headers.get("cookie")
    if not cookies:
        return "anonymous"
    return hashlib.sha256(cookies.encode("utf-8")).hexdigest()[:16]


def relay_cookies(result: ApiResponse, response: Response) -> None:
    """Copy the backend's Set-Cookie onto the outgoing response."""
    if result.set_cookie:
        response.headers["Set-Cookie"] = result.set_cookie


async def cached_fetch(cache: CacheManager, key: str,
                       fetcher: Callable[[], Awaitable[Any]],
                       ttl: Optional[float] = None,
                       tags: Optional[List[str]] = None) -> Any:
    """Return the live cached value for ``key`` or fetch and store it.

    Concurrent misses for the same key each call ``fetcher``; the last
    result written wins.
    """
    cached = cache.get(key)
    if cached is not None:
        return cached
    data = await fetcher()
    cache.set(key, data, ttl=ttl, tags=tags)
    return data
