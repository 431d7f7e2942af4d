"""Liveness, readiness and build info."""

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.config import get_settings
from skillify.database import get_session
from skillify.dependencies import get_event_redis

router = APIRouter()


async def _probe_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def _probe_redis(redis: Redis | None) -> str:
    if redis is None:
        return "disabled"
    try:
        await redis.ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    redis: Redis | None = Depends(get_event_redis),  # noqa: B008
) -> dict[str, object]:
    """Ready once the database answers. A Redis outage only degrades event fan-out."""
    checks = {"database": await _probe_database(db), "redis": await _probe_redis(redis)}

    if checks["database"] != "ok":
        status = "unavailable"
    elif checks["redis"] in ("ok", "disabled"):
        status = "ready"
    else:
        status = "degraded"
    return {"status": status, "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"service": "skillify-core", "version": settings.app_version, "environment": settings.environment}
