"""Idempotency guard shared by every mutating operation.

Protocol:

1. ``check_and_reserve`` (or ``ensure_not_done``) before any store write.
2. Perform and commit the mutation.
3. ``record`` the outcome so replays of the same key are rejected.

No lock is taken between steps 1 and 3. Two concurrent first attempts with
the same key can both proceed; the store's transaction is the authority on
final state. The record only suppresses replays that arrive after commit.
"""

from __future__ import annotations

import enum
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from workforce.cache import get_json, set_json
from workforce.config import get_settings
from workforce.exceptions import ConflictError

if TYPE_CHECKING:
    from workforce.cache import CacheGateway

logger = logging.getLogger(__name__)

DUPLICATE_REQUEST_MESSAGE = "Duplicate request: operation already performed with this idempotency key"


class Namespace(enum.StrEnum):
    """Operation namespaces; each has its own idempotency keyspace."""

    DEPARTMENT = "department"
    EMPLOYEE = "employee"
    LEAVE_REQUEST_CREATE = "leaverequest:create"
    LEAVE_REQUEST_UPDATE = "leaverequest:update"
    LEAVE_REQUEST_DELETE = "leaverequest:delete"


class IdempotencyDecision(enum.Enum):
    """Outcome of an idempotency check."""

    PROCEED = "PROCEED"
    ALREADY_DONE = "ALREADY_DONE"


def record_key(namespace: str, key: str) -> str:
    """Cache key holding the idempotency record for ``key`` in ``namespace``."""
    return f"idempotency:{namespace}:{key}"


def now_utc() -> datetime:
    return datetime.now(UTC)


class IdempotencyGuard:
    """Check-then-commit-then-record protocol over the cache gateway."""

    def __init__(self, cache: CacheGateway, ttl_seconds: int | None = None) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().idempotency_ttl_seconds

    async def check_and_reserve(self, namespace: str, key: str) -> IdempotencyDecision:
        """Return ALREADY_DONE when a record exists for ``key``, else PROCEED."""
        existing = await self._cache.get(record_key(namespace, key))
        if existing is not None:
            return IdempotencyDecision.ALREADY_DONE
        return IdempotencyDecision.PROCEED

    async def ensure_not_done(self, namespace: str, key: str) -> None:
        """Raise ConflictError when ``key`` was already used in ``namespace``."""
        if await self.check_and_reserve(namespace, key) is IdempotencyDecision.ALREADY_DONE:
            logger.info("Rejected replay of idempotency key %s in %s", key, namespace)
            raise ConflictError(DUPLICATE_REQUEST_MESSAGE)

    async def record(self, namespace: str, key: str, payload: dict[str, Any]) -> None:
        """Persist the outcome of a committed operation for the configured TTL."""
        await set_json(self._cache, record_key(namespace, key), payload, self._ttl_seconds)

    async def lookup(self, namespace: str, key: str) -> dict[str, Any] | None:
        """Return the stored outcome for ``key``, if any."""
        return await get_json(self._cache, record_key(namespace, key))
