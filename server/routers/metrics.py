"""Dashboard metrics proxy routes.

The dashboard polls these every few seconds. Each poll refreshes from the
backend; when the backend fails the last stored value is served instead of
an error.
"""

from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request

from core.cache import CacheManager
from core.config import Settings
from core.container import container
from services.backend import ApiClient, forward_headers, session_scope

router = APIRouter(prefix="/api/metrics", tags=["metrics"])

METRICS_TAG = "metrics"


@router.get("/classifications")
async def classification_metrics(
    request: Request,
    campaign_id: Optional[str] = Query(default=None),
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager()),
    settings: Settings = Depends(lambda: container.settings())
):
    """Response classification counts, optionally for one campaign."""
    endpoint = "/metrics/classifications"
    if campaign_id:
        endpoint = f"{endpoint}?{urlencode({'campaign_id': campaign_id})}"
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get(endpoint, headers=headers, use_cache=False)
        return result.data

    key = f"metrics:{session_scope(request)}:classifications:{campaign_id or 'all'}"
    return await cache.refresh(key, fetch, ttl=settings.metrics_cache_ttl, tags=[METRICS_TAG])


@router.get("/campaign-performance")
async def campaign_performance(
    request: Request,
    client: ApiClient = Depends(lambda: container.api_client()),
    cache: CacheManager = Depends(lambda: container.cache_manager()),
    settings: Settings = Depends(lambda: container.settings())
):
    headers = forward_headers(request)

    async def fetch() -> Any:
        result = await client.get("/metrics/campaign-performance", headers=headers, use_cache=False)
        return result.data

    key = f"metrics:{session_scope(request)}:campaign-performance"
    return await cache.refresh(key, fetch, ttl=settings.metrics_cache_ttl,
                               tags=[METRICS_TAG, "campaigns"])
