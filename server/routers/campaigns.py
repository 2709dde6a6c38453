"""Campaign proxy routes.

Reads are cached per session under the ``campaigns`` tag; every successful
mutation drops that tag so the next list comes from the backend.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from core.cache import CacheManager
from core.container import container
from core.logging import get_logger
from services.backend import ApiClient, cached_fetch, forward_headers, relay_cookies, session_scope

logger = get_logger(__name__)
router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])

CAMPAIGNS_TAG = "campaigns"


class CampaignCreateRequest(BaseModel):
    name: str
    subject: str
    description: Optional[str] = None
    created_by: str


class CampaignUpdateRequest(BaseModel):
    name: str
    subject: str
    description: Optional[str] = None
    file_id: Optional[int] = None


class CampaignSendRequest(BaseModel):
    campaign_id: int


class LinkFileRequest(BaseModel):
    campaign_id: int
    file_id: int


def _invalidate(cache: CacheManager, *tags: str) -> None:
    for tag in tags:
        cache.invalidate_by_tag(tag)


@router.get("")
async def list_campaigns(
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """List campaigns for the caller's session."""
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get("/campaigns", headers=headers, use_cache=False)
        relay_cookies(result, response)
        return result.data

    return await cached_fetch(
        cache, f"campaigns:{session_scope(request)}", fetch, tags=[CAMPAIGNS_TAG]
    )


@router.post("")
async def create_campaign(
    payload: CampaignCreateRequest,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Create a campaign."""
    result = await client.post("/campaigns", payload.model_dump(exclude_none=True),
                               headers=forward_headers(request))
    _invalidate(cache, CAMPAIGNS_TAG)
    relay_cookies(result, response)
    logger.info("Campaign created", name=payload.name)
    return result.data


@router.put("/{campaign_id}")
async def update_campaign(
    campaign_id: int,
    payload: CampaignUpdateRequest,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Update a campaign."""
    result = await client.put(f"/campaigns/{campaign_id}", payload.model_dump(exclude_none=True),
                              headers=forward_headers(request))
    _invalidate(cache, CAMPAIGNS_TAG)
    relay_cookies(result, response)
    return result.data


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: int,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Delete a campaign."""
    result = await client.delete(f"/campaigns/{campaign_id}", headers=forward_headers(request))
    _invalidate(cache, CAMPAIGNS_TAG, "metrics")
    relay_cookies(result, response)
    logger.info("Campaign deleted", campaign_id=campaign_id)
    return result.data


@router.post("/send")
async def send_campaign(
    payload: CampaignSendRequest,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Send a campaign to its subscribers."""
    result = await client.post(f"/campaigns/{payload.campaign_id}/send",
                               headers=forward_headers(request))
    _invalidate(cache, CAMPAIGNS_TAG, "metrics")
    relay_cookies(result, response)
    logger.info("Campaign sent", campaign_id=payload.campaign_id)
    return result.data


@router.post("/link-file")
async def link_file(
    payload: LinkFileRequest,
    request: Request,
    response: Response,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Attach an uploaded subscriber file to a campaign."""
    result = await client.post("/campaign-files", payload.model_dump(),
                               headers=forward_headers(request))
    _invalidate(cache, CAMPAIGNS_TAG)
    relay_cookies(result, response)
    return result.data
