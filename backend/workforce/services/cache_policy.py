"""Cache key layout, read-through caching and department-scoped invalidation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from workforce.cache import get_json, set_json
from workforce.config import get_settings

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

    from workforce.cache import CacheGateway

logger = logging.getLogger(__name__)

EMPLOYEES_ALL_KEY = "employees:all"
DEPARTMENTS_ALL_KEY = "departments:all"


def department_employees_key(department_id: uuid.UUID | str, page: int, limit: int) -> str:
    return f"departments:{department_id}:employees:page={page}&limit={limit}"


def department_employees_with_leaves_key(department_id: uuid.UUID | str, page: int, limit: int) -> str:
    return f"departments:{department_id}:employeesWithLeaves:page={page}&limit={limit}"


def department_employees_pattern(department_id: uuid.UUID | str) -> str:
    """Glob covering every cached employee view of a department.

    Matches both the plain and the with-leaves listings for all page and
    limit combinations.
    """
    return f"departments:{department_id}:employees*"


async def invalidate_department_employee_caches(cache: CacheGateway, department_id: uuid.UUID | str | None) -> int:
    """Delete every cached employee listing for ``department_id``.

    No-op when ``department_id`` is empty. Matching keys are removed in a
    single delete call. Returns the number of keys found.
    """
    if not department_id:
        return 0
    keys = await cache.scan_keys(department_employees_pattern(department_id))
    if keys:
        await cache.delete(*keys)
        logger.debug("Invalidated %d cache keys for department %s", len(keys), department_id)
    return len(keys)


async def invalidate_keys(cache: CacheGateway, *keys: str) -> None:
    """Delete fixed cache keys such as the global listings."""
    await cache.delete(*keys)


async def read_through(
    cache: CacheGateway,
    key: str,
    loader: Callable[[], Awaitable[Any]],
    ttl_seconds: int | None = None,
) -> Any:
    """Return the cached JSON value for ``key``, loading and caching it on a miss."""
    cached = await get_json(cache, key)
    if cached is not None:
        return cached
    value = await loader()
    ttl = ttl_seconds if ttl_seconds is not None else get_settings().cache_ttl_seconds
    await set_json(cache, key, value, ttl)
    return value
