"""Cache administration routes."""

from fastapi import APIRouter, Depends, Query

from core.cache import CacheManager
from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(cache: CacheManager = Depends(lambda: container.cache_manager())):
    return {"success": True, "stats": cache.get_stats().model_dump()}


@router.get("/keys")
async def cache_keys(cache: CacheManager = Depends(lambda: container.cache_manager())):
    return {"success": True, "keys": cache.get_keys()}


@router.get("/tags")
async def cache_tags(cache: CacheManager = Depends(lambda: container.cache_manager())):
    return {"success": True, "tags": cache.get_tags()}


@router.delete("/tags/{tag}")
async def invalidate_tag(tag: str, cache: CacheManager = Depends(lambda: container.cache_manager())):
    removed = cache.invalidate_by_tag(tag)
    logger.info("Cache tag invalidated", tag=tag, removed=removed)
    return {"success": True, "removed": removed}


@router.delete("/keys/{key:path}")
async def delete_key(key: str, cache: CacheManager = Depends(lambda: container.cache_manager())):
    return {"success": cache.delete(key)}


@router.delete("/all")
async def clear_cache(cache: CacheManager = Depends(lambda: container.cache_manager())):
    cache.clear()
    return {"success": True}


@router.delete("")
async def invalidate_pattern(
    pattern: str = Query(..., min_length=1),
    cache: CacheManager = Depends(lambda: container.cache_manager())
):
    """Drop every key containing ``pattern``."""
    removed = cache.invalidate_by_pattern(pattern)
    logger.info("Cache pattern invalidated", pattern=pattern, removed=removed)
    return {"success": True, "removed": removed}
