"""
Redis Client
Provides the async Redis connection backing the persistent gateway store.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import ConnectionPool
import structlog

from apirelay.config.settings import RedisSettings

logger = structlog.get_logger(__name__)


class RedisClient:
    """
    Async Redis client.

    Thin wrapper over ``redis.asyncio`` exposing the key-value, hash, set
    and sorted set operations the gateway store needs.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.db = db

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisClient":
        return cls(
            host=settings.host,
            port=settings.port,
            password=settings.password,
            db=settings.db,
        )

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self._pool = ConnectionPool(
                host=self.host,
                port=self.port,
                password=self.password,
                db=self.db,
                decode_responses=True,
                max_connections=20,
            )
            logger.info("connecting_to_redis", host=self.host, port=self.port)

            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()
            logger.info("redis_connected")

        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("redis_disconnected")

    @asynccontextmanager
    async def get_connection(self):
        """Context manager for Redis connection."""
        if not self._client:
            await self.connect()
        yield self._client

    # =========================================================================
    # Key-Value Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        async with self.get_connection() as client:
            return await client.get(key)

    async def set(
        self,
        key: str,
        value: Any,
        expire: Optional[int] = None,
    ) -> bool:
        """Set key-value with optional expiration (seconds)."""
        async with self.get_connection() as client:
            return await client.set(key, value, ex=expire)

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys."""
        async with self.get_connection() as client:
            return await client.delete(*keys)

    async def incr(self, key: str) -> int:
        """Increment key value."""
        async with self.get_connection() as client:
            return await client.incr(key)

    # =========================================================================
    # Hash Operations
    # =========================================================================

    async def hset(self, name: str, mapping: dict) -> int:
        """Set several hash fields at once."""
        async with self.get_connection() as client:
            return await client.hset(name, mapping=mapping)

    async def hgetall(self, name: str) -> dict:
        """Get all hash fields and values."""
        async with self.get_connection() as client:
            return await client.hgetall(name)

    # =========================================================================
    # List Operations
    # =========================================================================

    async def rpush(self, key: str, *values: Any) -> int:
        """Push values to list tail."""
        async with self.get_connection() as client:
            return await client.rpush(key, *values)

    # =========================================================================
    # Set Operations
    # =========================================================================

    async def sadd(self, key: str, *values: Any) -> int:
        """Add members to set."""
        async with self.get_connection() as client:
            return await client.sadd(key, *values)

    async def srem(self, key: str, *values: Any) -> int:
        """Remove members from set."""
        async with self.get_connection() as client:
            return await client.srem(key, *values)

    async def smembers(self, key: str) -> set:
        """Get all set members."""
        async with self.get_connection() as client:
            return await client.smembers(key)

    # =========================================================================
    # Sorted Set Operations
    # =========================================================================

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        """Add members with scores to sorted set."""
        async with self.get_connection() as client:
            return await client.zadd(key, mapping)

    async def zrem(self, key: str, *members: Any) -> int:
        """Remove members from sorted set."""
        async with self.get_connection() as client:
            return await client.zrem(key, *members)

    async def zrevrange(self, key: str, start: int, end: int) -> list:
        """Get sorted set range by index, highest score first."""
        async with self.get_connection() as client:
            return await client.zrevrange(key, start, end)


# Singleton instance
_redis_client: Optional[RedisClient] = None


def get_redis_client(settings: Optional[RedisSettings] = None) -> RedisClient:
    """Get or create Redis client singleton."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient.from_settings(settings or RedisSettings())
    return _redis_client


async def init_redis(settings: Optional[RedisSettings] = None) -> RedisClient:
    """Initialize Redis client and establish connection."""
    client = get_redis_client(settings)
    await client.connect()
    return client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.disconnect()
        _redis_client = None
