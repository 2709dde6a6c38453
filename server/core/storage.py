"""Durable key/value stores backing the cache manager.

Every store exposes the same async operations (``load``, ``save``,
``remove``, ``close``) and none of them raises: a failing backend degrades
to "no data" on reads and to a logged warning on writes.

Backends:
- SQLite: one row per key in ``cache_snapshots`` via aiosqlite (default)
- File: one ``<key>.json`` file per key in a directory
- Memory: process-local, used by tests and when persistence is disabled
"""

import asyncio
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from core.config import Settings
from core.logging import get_logger
from models.cache import CacheSnapshot

logger = get_logger(__name__)


@runtime_checkable
class DurableStore(Protocol):
    """Persistence facility for whole JSON documents keyed by string."""

    async def load(self, key: str, default: Any = None) -> Any:
        ...

    async def save(self, key: str, value: Any) -> bool:
        ...

    async def remove(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        ...


class MemoryStore:
    """Process-local store. Values are kept as JSON text so they round-trip
    exactly like the persistent backends do."""

    backend_id = "memory"

    def __init__(self):
        self._rows: Dict[str, str] = {}

    async def load(self, key: str, default: Any = None) -> Any:
        raw = self._rows.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Failed to decode stored value", key=key, error=str(e))
            return default

    async def save(self, key: str, value: Any) -> bool:
        try:
            self._rows[key] = json.dumps(value, default=str)
            return True
        except (TypeError, ValueError) as e:
            logger.warning("Failed to save value", key=key, backend=self.backend_id, error=str(e))
            return False

    async def remove(self, key: str) -> bool:
        self._rows.pop(key, None)
        return True

    async def close(self) -> None:
        pass


class FileStore:
    """Stores each key as ``<directory>/<key>.json``.

    Disk access runs in a worker thread so the event loop never waits on it.
    """

    backend_id = "file"

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe}.json"

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, serialized: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write to a temp file first so readers never see a partial document
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(serialized)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            return await asyncio.to_thread(self._read, path, default)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load value", key=key, backend=self.backend_id, error=str(e))
            return default

    async def save(self, key: str, value: Any) -> bool:
        try:
            serialized = json.dumps(value, default=str)
            await asyncio.to_thread(self._write, self._path(key), serialized)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save value", key=key, backend=self.backend_id, error=str(e))
            return False

    async def remove(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._path(key).unlink, missing_ok=True)
            return True
        except OSError as e:
            logger.warning("Failed to remove value", key=key, backend=self.backend_id, error=str(e))
            return False

    async def close(self) -> None:
        pass


def async_database_url(url: str) -> str:
    """Point a plain ``sqlite://`` URL at the aiosqlite driver."""
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


class SQLiteStore:
    """SQLModel-backed store on an async engine. The table is created on
    first use."""

    backend_id = "sqlite"

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = async_database_url(database_url)
        self.echo = echo
        self.engine = None
        self.async_session = None
        self._engine_lock = asyncio.Lock()

    async def _ensure_engine(self) -> None:
        if self.engine is not None:
            return
        async with self._engine_lock:
            if self.engine is not None:
                return
            engine = create_async_engine(self.database_url, echo=self.echo, future=True)
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(
                        lambda sync_conn: SQLModel.metadata.create_all(
                            sync_conn, tables=[CacheSnapshot.__table__]))
            except Exception:
                await engine.dispose()
                raise
            self.async_session = async_sessionmaker(
                bind=engine,
                class_=AsyncSession,
                expire_on_commit=False
            )
            self.engine = engine

    async def load(self, key: str, default: Any = None) -> Any:
        try:
            await self._ensure_engine()
            async with self.async_session() as session:
                row = await session.get(CacheSnapshot, key)
                if row is None:
                    return default
                return json.loads(row.value)
        except Exception as e:
            logger.warning("Failed to load value", key=key, backend=self.backend_id, error=str(e))
            return default

    async def save(self, key: str, value: Any) -> bool:
        try:
            serialized = json.dumps(value, default=str)
            await self._ensure_engine()
            async with self.async_session() as session:
                row = await session.get(CacheSnapshot, key)
                if row:
                    row.value = serialized
                    row.updated_at = time.time()
                else:
                    session.add(CacheSnapshot(key=key, value=serialized))
                await session.commit()
            return True
        except Exception as e:
            logger.warning("Failed to save value", key=key, backend=self.backend_id, error=str(e))
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self._ensure_engine()
            async with self.async_session() as session:
                row = await session.get(CacheSnapshot, key)
                if row:
                    await session.delete(row)
                    await session.commit()
            return True
        except Exception as e:
            logger.warning("Failed to remove value", key=key, backend=self.backend_id, error=str(e))
            return False

    async def close(self) -> None:
        """Close pooled connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Cache database connections closed")


def create_store(settings: Settings) -> DurableStore:
    """Build the durable store selected by ``CACHE_BACKEND``."""
    backend = settings.cache_backend
    if backend == "sqlite":
        store: DurableStore = SQLiteStore(settings.cache_database_url)
    elif backend == "file":
        store = FileStore(settings.cache_file_dir)
    else:
        store = MemoryStore()
    logger.info("Cache store created", backend=backend)
    return store
