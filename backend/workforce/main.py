from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from workforce.api.health import router as health_router
from workforce.api.router import api_router
from workforce.cache import RedisCache, get_cache, set_cache
from workforce.config import get_settings
from workforce.db import dispose_engine
from workforce.exceptions import setup_exception_handlers
from workforce.messaging import AmqpMessageChannel, get_message_channel, set_message_channel
from workforce.middleware import setup_middleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment)

    set_cache(RedisCache.from_url(settings.redis_url))
    set_message_channel(AmqpMessageChannel(settings.rabbitmq_url))
    yield

    logger.info("Shutting down %s", settings.app_name)
    await get_message_channel().close()
    await get_cache().close()
    await dispose_engine()


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    setup_middleware(application, settings)
    setup_exception_handlers(application)

    application.include_router(health_router)
    application.include_router(api_router)

    return application


app = create_app()
