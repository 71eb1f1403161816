"""Key-value cache gateway.

Backs two concerns: idempotency records and read-through response caches.
Values are strings; ``get_json``/``set_json`` handle (de)serialization.
"""

from __future__ import annotations

import enum
import fnmatch
import json
import logging
import time
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 500


def json_serializer(obj: Any) -> Any:
    """Serialize types the json module does not handle natively."""
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return float(obj)
    msg = f"Type {type(obj)} not serializable"
    raise TypeError(msg)


@runtime_checkable
class CacheGateway(Protocol):
    """Interface for the key-value cache."""

    async def get(self, key: str) -> str | None:
        """Return the value for ``key`` or None when missing or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` with an expiry."""
        ...

    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` in one call. Returns the number removed."""
        ...

    async def scan_keys(self, pattern: str) -> list[str]:
        """Return all keys matching a glob-style ``pattern``."""
        ...

    async def ping(self) -> bool:
        """Return True when the cache is reachable."""
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        ...


class RedisCache:
    """Redis-backed cache using ``redis.asyncio``."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        """Build a cache from a ``redis://`` URL."""
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def scan_keys(self, pattern: str) -> list[str]:
        # SCAN rather than KEYS so large keyspaces do not block the server.
        return [key async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)]

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception:
            logger.exception("Redis ping failed")
            return False

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCache:
    """In-memory stub implementation for development and tests."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._entries[key]
                removed += 1
        return removed

    async def scan_keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._entries) if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()

    def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None when it is missing."""
        if self._live(key) is None:
            return None
        _, expires_at = self._entries[key]
        return None if expires_at is None else expires_at - time.monotonic()


async def get_json(cache: CacheGateway, key: str) -> Any | None:
    """Fetch and decode a JSON value. Undecodable entries count as a miss."""
    raw = await cache.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable cache entry %s", key)
        return None


async def set_json(cache: CacheGateway, key: str, value: Any, ttl_seconds: int) -> None:
    """Encode ``value`` as JSON and store it with an expiry."""
    await cache.set(key, json.dumps(value, default=json_serializer), ttl_seconds)


_cache: CacheGateway = InMemoryCache()


def get_cache() -> CacheGateway:
    """FastAPI dependency for the cache gateway."""
    return _cache


def set_cache(cache: CacheGateway) -> None:
    """Override the cache (for testing or production wiring)."""
    global _cache
    _cache = cache
