"""URL-keyed response cache used by ApiClient for GET requests."""

import time
from typing import Callable, Dict, Optional

from core.logging import get_logger, log_cache_operation
from models.cache import CacheEntry, is_expired
from .models import ApiResponse

logger = get_logger(__name__)

REQUEST_CACHE_VERSION = "request"


class RequestCache:
    """Process-local map of full request URL to response envelope.

    Not persisted. Entries expire after ``ttl`` seconds and are dropped the
    next time they are looked up. Once the map grows past ``max_entries``
    a write purges every expired entry and then the oldest live ones.
    """

    def __init__(self, ttl: float = 300.0, max_entries: int = 500,
                 clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, url: str) -> Optional[ApiResponse]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        if is_expired(entry, self._clock()):
            del self._entries[url]
            log_cache_operation(logger, "request_get", url, hit=False, expired=True)
            return None
        log_cache_operation(logger, "request_get", url, hit=True)
        return entry.data

    def set(self, url: str, response: ApiResponse, ttl: Optional[float] = None) -> None:
        self._entries[url] = CacheEntry(
            data=response,
            timestamp=self._clock(),
            ttl=self.ttl if ttl is None else ttl,
            version=REQUEST_CACHE_VERSION,
        )
        log_cache_operation(logger, "request_set", url)
        if len(self._entries) > self.max_entries:
            self.sweep()

    def sweep(self) -> int:
        """Drop expired entries, then the oldest writes above capacity.

        Returns the number of removed entries.
        """
        now = self._clock()
        expired = [url for url, entry in self._entries.items() if is_expired(entry, now)]
        for url in expired:
            del self._entries[url]

        evicted = 0
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            by_age = sorted(self._entries.items(), key=lambda item: item[1].timestamp)
            for url, _ in by_age[:overflow]:
                del self._entries[url]
            evicted = overflow

        if expired or evicted:
            logger.debug("Request cache sweep", expired=len(expired), evicted=evicted)
        return len(expired) + evicted

    def clear(self) -> None:
        self._entries.clear()

    def invalidate(self, pattern: str) -> int:
        """Drop every URL containing ``pattern``."""
        doomed = [url for url in self._entries if pattern in url]
        for url in doomed:
            del self._entries[url]
        log_cache_operation(logger, "request_invalidate", pattern, deleted=len(doomed))
        return len(doomed)

    def __contains__(self, url: str) -> bool:
        return self.get(url) is not None

    def __len__(self) -> int:
        return len(self._entries)
