"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.cache import CacheManager
from core.storage import create_store
from services.backend import ApiClient


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Durable store for cache snapshots (SQLite, file or memory)
    cache_store = providers.Singleton(
        create_store,
        settings=settings
    )

    # Cache manager shared by every router
    cache_manager = providers.Singleton(
        CacheManager.from_settings,
        settings=settings,
        store=cache_store
    )

    # Campaign backend client
    api_client = providers.Singleton(
        ApiClient,
        base_url=settings.provided.backend_api_url,
        timeout=settings.provided.backend_timeout,
        cache_ttl=settings.provided.request_cache_ttl,
        cache_max_entries=settings.provided.request_cache_max_entries
    )


# Global container instance
container = Container()
