"""
FastAPI gateway between the campaign UI and the campaign backend.

Proxies campaign, response, metrics and email-account calls with cookie
forwarding, and serves repeated reads from a tag-aware TTL cache.
"""

from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.cache import set_cache_manager
from core.container import container
from core.config import Settings
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from routers import cache, campaigns, email_accounts, metrics, responses
from services.backend import ApiError

# Initialize settings and logging
settings = Settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
import logging
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting campaign gateway")
    set_startup_time()

    cache_manager = container.cache_manager()
    await cache_manager.startup()
    set_cache_manager(cache_manager)

    logger.info("Services started successfully",
                backend=settings.backend_api_url,
                cache_backend=settings.cache_backend)
    yield

    await cache_manager.shutdown()
    set_cache_manager(None)
    await container.cache_store().close()
    await container.api_client().close()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Campaign Gateway",
    version="1.0.0",
    description="Backend proxy and response cache for the campaign UI",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    """Render backend failures in the shape the UI expects."""
    logger.warning("Backend error", path=request.url.path, status=exc.status, error=exc.message)
    return JSONResponse(
        status_code=exc.status,
        content={"error": exc.message, "details": exc.details}
    )


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )

app.add_middleware(CatchAllExceptionsMiddleware)

# CORS must be added after the exception middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(campaigns.router)
app.include_router(responses.router)
app.include_router(metrics.router)
app.include_router(email_accounts.router)
app.include_router(cache.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    health = await get_health_status(container.cache_manager(), container.settings())
    return {
        **health,
        "service": "campaign-gateway",
        "version": app.version,
        "environment": "development" if settings.debug else "production",
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting campaign gateway",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None
    )
