"""Email account connection proxy routes."""

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response

from core.cache import CacheManager
from core.container import container
from core.logging import get_logger
from services.backend import ApiClient, cached_fetch, forward_headers, relay_cookies, session_scope

logger = get_logger(__name__)
router = APIRouter(prefix="/api/email-accounts", tags=["email-accounts"])

CONNECTION_TAG = "email-connection"


@router.get("/status")
async def connection_status(
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Whether the caller has a connected sending account."""
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get("/email-accounts/status", headers=headers, use_cache=False)
        relay_cookies(result, response)
        return result.data

    return await cached_fetch(
        cache, f"email-status:{session_scope(request)}", fetch, tags=[CONNECTION_TAG]
    )


@router.post("/disconnect")
async def disconnect(
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    result = await client.post("/email-accounts/disconnect", headers=forward_headers(request))
    cache.invalidate_by_tag(CONNECTION_TAG)
    relay_cookies(result, response)
    logger.info("Email account disconnected")
    return result.data


@router.get("/detect-provider")
async def detect_provider(
    email: str = Query(..., min_length=3),
    client: ApiClient = Depends(lambda: container.api_client())
):
    """Detect the mail provider for an address.

    The answer does not depend on the session, so it goes through the
    client's URL-keyed GET cache.
    """
    result = await client.get(f"/email-accounts/detect-provider?{urlencode({'email': email})}")
    return result.data
