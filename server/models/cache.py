"""Cache entry model and the SQLite row used to persist cache snapshots."""

import time
from typing import Any, List, Optional

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlmodel import SQLModel, Field


class CacheEntry(BaseModel):
    """One cached value with its write time, lifetime, schema version and tags.

    ``timestamp`` and ``ttl`` are in seconds. The entry is live while
    ``now - timestamp < ttl``; use :func:`is_expired` rather than comparing
    the fields directly.
    """

    data: Any = None
    timestamp: float
    ttl: float
    version: str
    tags: List[str] = PydanticField(default_factory=list)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


def is_expired(entry: CacheEntry, now: Optional[float] = None) -> bool:
    """Return True once ``entry`` has outlived its TTL."""
    if now is None:
        now = time.time()
    return now - entry.timestamp >= entry.ttl


class CacheSnapshot(SQLModel, table=True):
    """Whole-snapshot key/value row for the SQLite durable store.

    Each row holds one JSON document; writers replace the full value rather
    than patching it.
    """

    __tablename__ = "cache_snapshots"

    key: str = Field(primary_key=True, max_length=512)
    value: str  # JSON serialized
    updated_at: float = Field(default_factory=time.time)
