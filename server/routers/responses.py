"""Response viewer proxy routes (threaded replies and their source emails)."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from core.cache import CacheManager
from core.container import container
from core.logging import get_logger
from services.backend import ApiClient, cached_fetch, forward_headers, relay_cookies, session_scope

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["responses"])

RESPONSES_TAG = "responses"
EMAILS_TAG = "emails"


class ResponseCreateRequest(BaseModel):
    email_id: int
    responder_email: str
    body: str
    parent_response_id: Optional[int] = None
    subject: Optional[str] = None
    recipient_email: Optional[str] = None
    message_id: Optional[str] = None
    in_reply_to: Optional[str] = None


@router.get("/responses")
async def list_responses(
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get("/responses", headers=headers, use_cache=False)
        relay_cookies(result, response)
        return result.data

    return await cached_fetch(
        cache, f"responses:{session_scope(request)}", fetch, tags=[RESPONSES_TAG]
    )


@router.get("/responses/{response_id}")
async def get_response(
    response_id: str,
    request: Request,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get(f"/responses/{response_id}", headers=headers, use_cache=False)
        return result.data

    return await cached_fetch(
        cache,
        f"responses:{session_scope(request)}:{response_id}",
        fetch,
        tags=[RESPONSES_TAG, f"response:{response_id}"],
    )


@router.post("/responses")
async def create_response(
    payload: ResponseCreateRequest,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Post a reply into a response thread."""
    result = await client.post("/responses", payload.model_dump(exclude_none=True),
                               headers=forward_headers(request))
    cache.invalidate_by_tag(RESPONSES_TAG)
    relay_cookies(result, response)
    logger.info("Response created", email_id=payload.email_id)
    return result.data


@router.get("/emails/{email_id}")
async def get_email(
    email_id: int,
    request: Request,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get(f"/emails/{email_id}", headers=headers, use_cache=False)
        return result.data

    return await cached_fetch(
        cache, f"emails:{session_scope(request)}:{email_id}", fetch, tags=[EMAILS_TAG]
    )
