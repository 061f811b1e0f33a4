"""
Redis client
"""
import redis.asyncio as redis
from campus_points.config import get_settings

settings = get_settings()

# connections are opened lazily on first command
redis_client = redis.from_url(
    settings.redis_url,
    encoding="utf-8",
    decode_responses=True,
    max_connections=50,
    socket_timeout=5,
    socket_connect_timeout=5,
    retry_on_timeout=True,
    health_check_interval=30,
)


async def get_redis():
    """Return the shared Redis client"""
    return redis_client
