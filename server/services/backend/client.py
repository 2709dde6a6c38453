"""HTTP client for the campaign backend.

GET requests are cache-first: a live entry in the request cache is
returned without touching the network, and only successful JSON GET
responses are written back. Mutating methods bypass the cache entirely;
callers invalidate what they changed.

Usage:
    client = ApiClient("http://localhost:5000/api")
    response = await client.get("/campaigns", headers={"Cookie": cookie})
    await client.post("/campaigns", {"name": "Spring"})
    client.invalidate_cache("/campaigns")
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

import httpx

from core.logging import get_logger, log_backend_call
from .exceptions import ApiError, AuthenticationRequiredError, RequestTimeoutError
from .models import ApiResponse
from .request_cache import RequestCache

logger = get_logger(__name__)

CACHEABLE_METHODS = frozenset(["GET"])


class ApiClient:
    """Backend client with an opportunistic GET cache.

    Args:
        base_url: Prefix joined with every endpoint (``base_url + endpoint``).
        timeout: Default deadline in seconds for a whole request, from
            connect to the last byte of the body.
        cache_ttl: Lifetime of cached GET responses in seconds.
        cache_max_entries: Size above which the GET cache purges itself.
        transport: Optional httpx transport (tests pass a MockTransport).
        clock: Time source for the request cache.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, cache_ttl: float = 300.0,
                 cache_max_entries: int = 500,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.time):
        self.base_url = base_url.rstrip("/")
        self.default_timeout = timeout
        self.cache = RequestCache(ttl=cache_ttl, max_entries=cache_max_entries, clock=clock)
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    async def request(self, method: str, endpoint: str, json: Any = None,
                      headers: Optional[Dict[str, str]] = None,
                      timeout: Optional[float] = None,
                      use_cache: bool = True) -> ApiResponse:
        """Send a request and return the success envelope or raise ApiError."""
        method = (method or "GET").upper()
        url = self._url(endpoint)
        cacheable = use_cache and method in CACHEABLE_METHODS

        if cacheable:
            cached = self.cache.get(url)
            if cached is not None:
                return cached

        deadline = timeout if timeout is not None else self.default_timeout
        try:
            # httpx times each phase separately; wait_for bounds the whole call
            response = await asyncio.wait_for(
                self._client.request(method, url, json=json, headers=headers, timeout=deadline),
                deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("Backend request timed out", method=method, url=url, error=str(e))
            raise RequestTimeoutError(details={"message": "Request timeout"}) from e
        except httpx.HTTPError as e:
            logger.error("Backend request failed", method=method, url=url, error=str(e))
            raise ApiError("Failed to connect to backend", 500, {"message": str(e)}) from e

        log_backend_call(logger, method, url, response.status_code)

        if not response.is_success:
            raise self._error_from_response(response)

        is_json, data = self._parse_body(response)
        result = ApiResponse(
            success=True,
            message="Success",
            data=data,
            set_cookie=response.headers.get("set-cookie"),
        )

        if cacheable and is_json:
            # Set-Cookie belongs to this caller only, never replay it from cache
            self.cache.set(url, result.model_copy(update={"set_cookie": None}))

        return result

    def _parse_body(self, response: httpx.Response):
        """Return ``(is_json, body)`` according to the content type."""
        content_type = response.headers.get("content-type", "")

        if "application/json" in content_type:
            try:
                return True, response.json()
            except ValueError as e:
                raise ApiError("Invalid JSON response from backend", 500,
                               {"message": str(e)}) from e

        if "text/html" in content_type:
            raise AuthenticationRequiredError()

        return False, response.text

    def _error_from_response(self, response: httpx.Response) -> ApiError:
        status = response.status_code
        try:
            _, body = self._parse_body(response)
        except AuthenticationRequiredError as e:
            logger.error("Backend returned HTML instead of JSON", status=status)
            return e
        except ApiError:
            return ApiError("Backend error occurred", status)

        message = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
        return ApiError(message or f"HTTP error! status: {status}", status, body)

    # ============================================================================
    # Cache control
    # ============================================================================

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate_cache(self, pattern: str) -> int:
        return self.cache.invalidate(pattern)

    # ============================================================================
    # Verb helpers
    # ============================================================================

    async def get(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, data: Any = None, **kwargs) -> ApiResponse:
        return await self.request("POST", endpoint, json=data, **kwargs)

    async def put(self, endpoint: str, data: Any = None, **kwargs) -> ApiResponse:
        return await self.request("PUT", endpoint, json=data, **kwargs)

    async def patch(self, endpoint: str, data: Any = None, **kwargs) -> ApiResponse:
        return await self.request("PATCH", endpoint, json=data, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request("DELETE", endpoint, **kwargs)
