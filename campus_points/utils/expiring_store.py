"""
Keyed store with explicit expiry

Rate-limit counters and other short-lived tokens live here instead of in
process memory. The store is handed to callers through ``get_expiring_store``
so tests can swap in their own.
"""
import logging
from typing import Optional, Protocol
from redis.exceptions import RedisError

from campus_points.utils.redis_client import redis_client

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The backing store could not be reached"""


class ExpiringStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter; the expiry starts with the first increment"""
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisExpiringStore:
    """ExpiringStore backed by Redis keys with TTLs"""

    def __init__(self, client, prefix: str = "campus_points"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(self._key(key))
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(self._key(key), value, ex=ttl_seconds)
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def incr(self, key: str, ttl_seconds: int) -> int:
        full_key = self._key(key)
        try:
            count = await self.client.incr(full_key)
            if count == 1:
                await self.client.expire(full_key, ttl_seconds)
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return int(count)

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc


_store = RedisExpiringStore(redis_client)


def get_expiring_store() -> ExpiringStore:
    """FastAPI dependency returning the process store"""
    return _store
