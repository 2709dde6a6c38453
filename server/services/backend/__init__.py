"""Campaign backend access.

- ApiClient: httpx client with cache-first GET and normalized errors
- RequestCache: URL-keyed response cache used by ApiClient
- Proxy helpers: cookie forwarding and per-session cache keys for routers
"""

from .client import ApiClient
from .exceptions import ApiError, AuthenticationRequiredError, RequestTimeoutError
from .models import ApiResponse
from .request_cache import RequestCache
from .proxy import cached_fetch, forward_headers, relay_cookies, session_scope

__all__ = [
    "ApiClient",
    "ApiError",
    "ApiResponse",
    "AuthenticationRequiredError",
    "RequestCache",
    "RequestTimeoutError",
    "cached_fetch",
    "forward_headers",
    "relay_cookies",
    "session_scope",
]
