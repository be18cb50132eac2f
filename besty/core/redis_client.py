import redis.asyncio as redis
from typing import Optional
from besty.core.config import Settings, settings as default_settings
from loguru import logger

# Backs the server-side session store; only opened when REDIS_HOST is set
_redis_client: Optional[redis.Redis] = None


async def init_redis_client(settings: Settings = default_settings) -> redis.Redis:
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    client = redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        decode_responses=False,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.error(f"Failed to connect to session Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}")
        await client.aclose()
        raise
    _redis_client = client
    logger.info(f"Session Redis connected at {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    return _redis_client


async def close_redis_client():
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        logger.info("Session Redis connection closed")
    _redis_client = None
