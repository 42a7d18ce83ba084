# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Redis Storage Provider.

Production backend with connection pooling. ``set_if_absent`` maps to
``SET NX`` so the ledger's compare-and-set holds across processes.
"""

import logging
from typing import Any, Optional

from ..exceptions import StorageError
from .provider import AbstractStorageProvider, StorageConfig

logger = logging.getLogger(__name__)


class RedisStorageProvider(AbstractStorageProvider):
    """
    Redis storage provider.

    Features:
    - Connection pooling
    - Atomic SET NX for idempotency records and leases
    - TTL support

    Requires: redis package (``pip install rewardsync[redis]``)
    """

    def __init__(self, config: StorageConfig, client: Optional[Any] = None):
        """Initialize Redis storage.

        Args:
            config: Storage configuration.
            client: Pre-built ``redis.asyncio`` compatible client. When
                given, ``connect`` only verifies it with a ping.
        """
        super().__init__(config)
        self._client = client
        self._pool = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError:
                raise ImportError(
                    "redis package is required for RedisStorageProvider. "
                    "Install with: pip install rewardsync[redis]"
                )

            if self.config.connection_string:
                self._pool = aioredis.ConnectionPool.from_url(
                    self.config.connection_string,
                    max_connections=self.config.pool_size,
                    socket_timeout=self.config.timeout_seconds,
                    decode_responses=True,
                )
            else:
                self._pool = aioredis.ConnectionPool(
                    host=self.config.redis_host,
                    port=self.config.redis_port,
                    db=self.config.redis_db,
                    password=self.config.redis_password,
                    connection_class=(
                        aioredis.SSLConnection if self.config.redis_ssl else aioredis.Connection
                    ),
                    max_connections=self.config.pool_size,
                    socket_timeout=self.config.timeout_seconds,
                    socket_connect_timeout=self.config.timeout_seconds,
                    decode_responses=True,
                )
            self._client = aioredis.Redis(connection_pool=self._pool)

        try:
            await self._client.ping()
        except Exception as exc:
            raise StorageError(f"Redis connection failed: {exc}") from exc

    async def disconnect(self) -> None:
        """Close connection to Redis."""
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()

    async def health_check(self) -> bool:
        """Check if Redis is healthy."""
        try:
            if self._client is not None:
                await self._client.ping()
                return True
        except Exception:
            logger.debug("Redis health check failed", exc_info=True)
        return False

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        return await self._client.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Set value with optional TTL."""
        if ttl_seconds is not None:
            return bool(await self._client.setex(key, ttl_seconds, value))
        return bool(await self._client.set(key, value))

    async def set_if_absent(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """SET NX with optional expiry."""
        result = await self._client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(result)

    async def delete(self, key: str) -> bool:
        """Delete key."""
        result = await self._client.delete(key)
        return result > 0

    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        result = await self._client.exists(key)
        return result > 0

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get hash field value."""
        return await self._client.hget(key, field)

    async def hset(self, key: str, field: str, value: str) -> bool:
        """Set hash field value."""
        result = await self._client.hset(key, field, value)
        return result >= 0

    async def hgetall(self, key: str) -> dict[str, str]:
        """Get all hash fields."""
        return await self._client.hgetall(key)

    async def hdel(self, key: str, field: str) -> bool:
        """Delete hash field."""
        result = await self._client.hdel(key, field)
        return result > 0

    async def hkeys(self, key: str) -> list[str]:
        """Get all hash field names."""
        return await self._client.hkeys(key)

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        """Push value to tail of list."""
        return await self._client.rpush(key, value)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop]."""
        return await self._client.lrange(key, start, stop)

    async def llen(self, key: str) -> int:
        """Get list length."""
        return await self._client.llen(key)

    async def lrem(self, key: str, value: str) -> int:
        """Remove all occurrences of value from the list."""
        return await self._client.lrem(key, 0, value)
