# ruff: noqa: B008
from __future__ import annotations

import re
from typing import Annotated

from fastapi import Depends, Header

from workforce.cache import CacheGateway, get_cache
from workforce.exceptions import BadRequestError
from workforce.messaging import MessageChannel, get_message_channel

IDEMPOTENCY_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


async def get_idempotency_key(
    idempotency_key: str | None = Header(default=None),
) -> str:
    """Require a well-formed ``Idempotency-Key`` header on mutating requests."""
    if not idempotency_key:
        raise BadRequestError("Idempotency-Key header is required")
    if not IDEMPOTENCY_KEY_PATTERN.fullmatch(idempotency_key):
        raise BadRequestError(
            "Idempotency-Key must be 8-64 characters long and contain only "
            "alphanumeric characters, hyphens, and underscores"
        )
    return idempotency_key


IdempotencyKeyDep = Annotated[str, Depends(get_idempotency_key)]
CacheDep = Annotated[CacheGateway, Depends(get_cache)]
ChannelDep = Annotated[MessageChannel, Depends(get_message_channel)]
