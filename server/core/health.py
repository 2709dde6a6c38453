"""Health check utilities for the /health endpoint."""
import time
from typing import Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheManager

# Module-level startup time tracking
_startup_time: float = 0.0

HEALTH_PROBE_KEY = "_health_check"


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_store(cache: "CacheManager") -> bool:
    """Round-trip a probe value through the durable store."""
    if not cache.config.enable_persistence:
        return True
    store = cache.store
    if not await store.save(HEALTH_PROBE_KEY, "ok"):
        return False
    result = await store.load(HEALTH_PROBE_KEY, None)
    await store.remove(HEALTH_PROBE_KEY)
    return result == "ok"


async def get_health_status(cache: "CacheManager", settings: "Settings") -> Dict[str, Any]:
    """Get health status including cache statistics.

    Returns:
        Dict containing status, uptime, cache stats and configuration flags.
    """
    store_healthy = await check_store(cache)
    sweeper_running = cache.is_running

    overall_status = "healthy" if (store_healthy and sweeper_running) else "degraded"

    return {
        "status": overall_status,
        "uptime_seconds": round(get_uptime(), 1),
        "checks": {
            "cache_store": store_healthy,
            "cache_sweeper": sweeper_running,
        },
        "cache": cache.get_stats().model_dump(),
        "features": {
            "cache_backend": settings.cache_backend,
            "cache_persistence": settings.cache_persistence_enabled,
            "cache_version": settings.cache_version,
        },
    }
