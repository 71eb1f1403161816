import logging
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from workforce.api.deps import CacheDep, ChannelDep
from workforce.config import get_settings
from workforce.db import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

CheckStatus = Literal["ok", "error"]


class HealthChecks(BaseModel):
    """Connectivity of each backing service."""

    database: CheckStatus
    cache: CheckStatus
    queue: CheckStatus


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded", "error"]
    version: str
    environment: str
    checks: HealthChecks


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep, cache: CacheDep, channel: ChannelDep) -> HealthResponse:
    """Return the health status of the API service and its backing services."""
    settings = get_settings()

    database: CheckStatus = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database connectivity failed")
        database = "error"

    cache_status: CheckStatus = "ok" if await cache.ping() else "error"
    queue_status: CheckStatus = "ok" if await channel.ping() else "error"

    checks = HealthChecks(database=database, cache=cache_status, queue=queue_status)
    healthy = all(value == "ok" for value in checks.model_dump().values())
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        checks=checks,
    )
