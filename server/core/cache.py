"""Tag-aware TTL cache with whole-snapshot persistence.

The manager keeps an in-memory index of ``CacheEntry`` objects and mirrors
it into a durable store under a single key. Entries written by a different
schema version are dropped when the snapshot is loaded, and a background
sweep purges expired entries and trims the index to ``max_entries``
(oldest write first).

Writes never wait on the store: each mutation marks the snapshot dirty and
a single background writer saves the latest state. Persistence never
raises out of the manager; a failing store only costs durability.
"""

import asyncio
import json
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from core.config import Settings
from core.logging import get_logger, log_cache_operation
from core.storage import DurableStore, MemoryStore
from models.cache import CacheEntry, is_expired

logger = get_logger(__name__)

T = TypeVar("T")


class CacheConfig(BaseModel):
    """Manager configuration, fixed at construction."""

    model_config = ConfigDict(frozen=True)

    default_ttl: float = 300.0       # 5 minutes
    max_entries: int = 1000
    version: str = "1.0.0"
    enable_persistence: bool = True
    storage_key: str = "app-cache"
    sweep_interval: float = 60.0     # 1 minute


class CacheStats(BaseModel):
    total_entries: int
    expired_entries: int
    valid_entries: int
    memory_usage: int


class CacheManager:
    """In-memory cache index with TTL expiry, tags and durable snapshots.

    Args:
        store: Durable store used for snapshots. Defaults to a MemoryStore.
        default_ttl: Seconds an entry lives when ``set`` gets no ``ttl``.
        max_entries: Upper bound enforced by ``sweep``.
        version: Schema version stamped on every entry.
        enable_persistence: When False the store is never touched.
        storage_key: Key of the snapshot document in the store.
        sweep_interval: Seconds between background sweeps.
        clock: Time source returning seconds since epoch.
    """

    def __init__(self, store: Optional[DurableStore] = None, *,
                 default_ttl: float = 300.0,
                 max_entries: int = 1000,
                 version: str = "1.0.0",
                 enable_persistence: bool = True,
                 storage_key: str = "app-cache",
                 sweep_interval: float = 60.0,
                 clock: Callable[[], float] = time.time):
        self.config = CacheConfig(
            default_ttl=default_ttl,
            max_entries=max_entries,
            version=version,
            enable_persistence=enable_persistence,
            storage_key=storage_key,
            sweep_interval=sweep_interval,
        )
        self.store = store if store is not None else MemoryStore()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.Task] = None
        self._dirty = False

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[DurableStore] = None) -> "CacheManager":
        return cls(
            store,
            default_ttl=settings.cache_default_ttl,
            max_entries=settings.cache_max_entries,
            version=settings.cache_version,
            enable_persistence=settings.cache_persistence_enabled,
            storage_key=settings.cache_storage_key,
            sweep_interval=settings.cache_sweep_interval,
        )

    # ============================================================================
    # Lifecycle
    # ============================================================================

    async def startup(self) -> None:
        """Load the persisted snapshot, sweep once and start the sweep loop."""
        if self._running:
            logger.warning("Cache manager already running")
            return

        if self.config.enable_persistence:
            await self.load()
        self.sweep()

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Cache manager started",
                    entries=len(self._entries),
                    version=self.config.version,
                    sweep_interval=self.config.sweep_interval)

    async def shutdown(self) -> None:
        """Stop the background sweep and write out any pending snapshot."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()
        logger.info("Cache manager stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Cache sweep failed", error=str(e))

    async def load(self) -> int:
        """Merge live entries of the current version from the store.

        Returns the number of entries loaded. Stale, foreign-version and
        malformed records are dropped without error.
        """
        try:
            stored = await self.store.load(self.config.storage_key, {})
        except Exception as e:
            logger.warning("Failed to load cache snapshot",
                           storage_key=self.config.storage_key, error=str(e))
            return 0
        if not isinstance(stored, dict):
            logger.warning("Ignoring malformed cache snapshot",
                           storage_key=self.config.storage_key)
            return 0

        now = self._clock()
        loaded = 0
        with self._lock:
            for key, raw in stored.items():
                try:
                    entry = CacheEntry.model_validate(raw)
                except ValueError:
                    continue
                if entry.version == self.config.version and not is_expired(entry, now):
                    self._entries[key] = entry
                    loaded += 1

        logger.debug("Cache snapshot loaded", loaded=loaded, stored=len(stored))
        return loaded

    # ============================================================================
    # Write-behind persistence
    # ============================================================================

    def _persist(self) -> None:
        """Mark the snapshot dirty and make sure a writer is scheduled.

        Only one writer task runs at a time and it always saves the latest
        snapshot, so bursts of writes coalesce and saves land in order.
        Outside a running event loop the snapshot waits for the next
        ``flush`` or sweep.
        """
        if not self.config.enable_persistence:
            return
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._writer_idle(loop):
            self._writer = loop.create_task(self._write_behind())

    async def _write_behind(self) -> None:
        key = self.config.storage_key
        while self._dirty:
            self._dirty = False
            try:
                with self._lock:
                    snapshot = self._snapshot()
                saved = await self.store.save(key, snapshot)
            except asyncio.CancelledError:
                self._dirty = True
                raise
            except Exception as e:
                logger.warning("Failed to persist cache snapshot", storage_key=key, error=str(e))
                continue
            if not saved:
                logger.warning("Cache snapshot not persisted", storage_key=key)

    async def flush(self) -> None:
        """Wait until the latest snapshot has been handed to the store."""
        loop = asyncio.get_running_loop()
        if self.config.enable_persistence and self._dirty and self._writer_idle(loop):
            self._writer = loop.create_task(self._write_behind())
        if not self._writer_idle(loop):
            await self._writer

    def _writer_idle(self, loop: asyncio.AbstractEventLoop) -> bool:
        # A writer left behind on another (closed) loop will never finish
        return (self._writer is None or self._writer.done()
                or self._writer.get_loop() is not loop)

    def _snapshot(self) -> Dict[str, Any]:
        return {key: entry.model_dump(mode="json") for key, entry in self._entries.items()}

    # ============================================================================
    # Core operations
    # ============================================================================

    def set(self, key: str, data: Any, ttl: Optional[float] = None,
            tags: Optional[List[str]] = None) -> None:
        """Store ``data`` under ``key``, replacing any previous entry."""
        entry = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl=self.config.default_ttl if ttl is None else ttl,
            version=self.config.version,
            tags=list(tags or []),
        )
        with self._lock:
            self._entries[key] = entry
            over_capacity = len(self._entries) > self.config.max_entries
        log_cache_operation(logger, "set", key, ttl=entry.ttl, tags=entry.tags)

        if over_capacity:
            self.sweep()
        else:
            self._persist()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached data, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                log_cache_operation(logger, "get", key, hit=False)
                return None
            if is_expired(entry, self._clock()):
                # Removal is persisted by the next write or sweep
                del self._entries[key]
                log_cache_operation(logger, "get", key, hit=False, expired=True)
                return None
        log_cache_operation(logger, "get", key, hit=True)
        return entry.data

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if is_expired(entry, self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns whether an entry existed."""
        with self._lock:
            existed = self._entries.pop(key, None) is not None
        log_cache_operation(logger, "delete", key, deleted=existed)
        if existed:
            self._persist()
        return existed

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared", removed=count)
        self._persist()

    def _remove_where(self, predicate: Callable[[str, CacheEntry], bool]) -> int:
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(key, entry)]
            for key in doomed:
                del self._entries[key]
        self._persist()
        return len(doomed)

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``."""
        removed = self._remove_where(lambda key, entry: tag in entry.tags)
        log_cache_operation(logger, "invalidate_by_tag", tag, deleted=removed)
        return removed

    def invalidate_by_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern`` literally."""
        removed = self._remove_where(lambda key, entry: pattern in key)
        log_cache_operation(logger, "invalidate_by_pattern", pattern, deleted=removed)
        return removed

    def invalidate_by_version(self, version: str) -> int:
        """Remove every entry whose version differs from ``version``."""
        removed = self._remove_where(lambda key, entry: entry.version != version)
        log_cache_operation(logger, "invalidate_by_version", version, deleted=removed)
        return removed

    def sweep(self) -> int:
        """Purge expired entries, then evict oldest writes above capacity.

        Persists once. Returns the number of removed entries.
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if is_expired(entry, now)]
            for key in expired:
                del self._entries[key]

            evicted: List[str] = []
            overflow = len(self._entries) - self.config.max_entries
            if overflow > 0:
                by_age = sorted(self._entries.items(), key=lambda item: item[1].timestamp)
                evicted = [key for key, _ in by_age[:overflow]]
                for key in evicted:
                    del self._entries[key]

        if expired or evicted:
            logger.debug("Cache sweep", expired=len(expired), evicted=len(evicted))
        self._persist()
        return len(expired) + len(evicted)

    # ============================================================================
    # Introspection
    # ============================================================================

    def get_stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            expired_count = sum(1 for entry in self._entries.values() if is_expired(entry, now))
            total = len(self._entries)
            try:
                memory_usage = len(json.dumps(self._snapshot(), default=str).encode("utf-8"))
            except (TypeError, ValueError):
                memory_usage = 0
        return CacheStats(
            total_entries=total,
            expired_entries=expired_count,
            valid_entries=total - expired_count,
            memory_usage=memory_usage,
        )

    def get_keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def get_tags(self) -> List[str]:
        with self._lock:
            tags: Dict[str, None] = {}
            for entry in self._entries.values():
                tags.update(dict.fromkeys(entry.tags))
        return list(tags)

    def __len__(self) -> int:
        return len(self._entries)

    # ============================================================================
    # Fetch helpers
    # ============================================================================

    async def preload(self, key: str, fetcher: Callable[[], Awaitable[T]],
                      ttl: Optional[float] = None,
                      tags: Optional[List[str]] = None) -> T:
        """Always run ``fetcher`` and store its result (cache warming)."""
        data = await fetcher()
        self.set(key, data, ttl=ttl, tags=tags)
        return data

    async def refresh(self, key: str, fetcher: Callable[[], Awaitable[T]],
                      ttl: Optional[float] = None,
                      tags: Optional[List[str]] = None) -> T:
        """Run ``fetcher`` and store the result.

        When the fetcher fails, the last stored value for ``key`` is
        returned even if it has expired. Without one, the fetcher's
        exception propagates.
        """
        try:
            data = await fetcher()
        except Exception as e:
            with self._lock:
                entry = self._entries.get(key)
            if entry is not None:
                logger.warning("Refresh failed, serving cached value",
                               cache_key=key, error=str(e),
                               stale=is_expired(entry, self._clock()))
                return entry.data
            raise
        self.set(key, data, ttl=ttl, tags=tags)
        return data


# ============================================================================
# Application-wide accessors
# ============================================================================

_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """Get the registered cache manager."""
    if _manager is None:
        raise RuntimeError("Cache manager not initialized")
    return _manager


def set_cache_manager(manager: Optional[CacheManager]) -> None:
    """Register the cache manager used by the module-level helpers."""
    global _manager
    _manager = manager


def set_cache(key: str, data: Any, ttl: Optional[float] = None,
              tags: Optional[List[str]] = None) -> None:
    get_cache_manager().set(key, data, ttl=ttl, tags=tags)


def get_cache(key: str) -> Optional[Any]:
    return get_cache_manager().get(key)


def has_cache(key: str) -> bool:
    return get_cache_manager().has(key)


def invalidate_cache(pattern: str) -> int:
    return get_cache_manager().invalidate_by_pattern(pattern)


def invalidate_cache_by_tag(tag: str) -> int:
    return get_cache_manager().invalidate_by_tag(tag)
