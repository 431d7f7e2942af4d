"""Skillify engagement core: ASGI entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from skillify.certificates.router import router as certificates_router
from skillify.config import get_settings
from skillify.database import close_db, create_schema, init_db
from skillify.gamification.router import router as gamification_router
from skillify.health.router import router as health_router
from skillify.middleware import setup_middleware
from skillify.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Open the database (and Redis when configured) for the app's lifetime."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.create_schema_on_startup:
        await create_schema()
    await init_redis(settings.redis_url)
    logger.info("startup_complete", environment=settings.environment, version=settings.app_version)
    try:
        yield
    finally:
        await close_redis()
        await close_db()
        logger.info("shutdown_complete")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Skillify Engagement Core",
        description="Credential verification and engagement scoring for Skillify",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    setup_middleware(app, settings)

    app.include_router(health_router, tags=["Health"])
    for router in (certificates_router, gamification_router):
        app.include_router(router)
    return app


app = create_app()
