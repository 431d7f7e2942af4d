"""Optional Redis client for engagement event fan-out.

Redis only carries best-effort pub/sub events, so an unreachable server
disables publishing instead of failing startup.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

_client: redis.Redis | None = None


async def init_redis(url: str) -> redis.Redis | None:
    """Connect and ping. Leaves events disabled when ``url`` is empty or Redis is down."""
    global _client  # noqa: PLW0603
    if not url:
        logger.info("redis_disabled", reason="no redis_url configured")
        return None

    client = redis.from_url(url, encoding="utf-8", decode_responses=True, max_connections=20)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("redis_unreachable", url=url, error=str(exc))
        await client.aclose()
        return None

    _client = client
    logger.info("redis_connected", url=url)
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis | None:
    """The event client, or None while publishing is disabled."""
    return _client
