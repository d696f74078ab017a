"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from pokerdna.config import get_settings
from pokerdna.database import close_db, init_db
from pokerdna.health.router import router as health_router
from pokerdna.middleware import setup_middleware
from pokerdna.redis_client import close_redis, init_redis
from pokerdna.xp.router import router as xp_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url, settings.request_deadline_seconds)
    await init_redis(settings.redis_url)
    logger.info("pokerdna_started", version=settings.app_version, environment=settings.environment)

    yield

    await close_db()
    await close_redis()
    logger.info("pokerdna_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PokerDNA API",
        description="XP permanence and DNA profile service",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(xp_router)

    return app


app = create_app()
