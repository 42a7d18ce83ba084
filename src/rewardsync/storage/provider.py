# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Abstract Storage Provider Interface.

Defines the contract that all storage backends must implement.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from ..constants import DEFAULT_KEY_PREFIX


class StorageConfig(BaseModel):
    """Configuration for storage provider."""

    backend: str = Field(default="memory", description="Storage backend type (memory or redis)")
    connection_string: Optional[str] = Field(default=None, description="Connection URL, e.g. redis://host:6379/0")
    key_prefix: str = Field(default=DEFAULT_KEY_PREFIX, description="Namespace prepended to every key")
    pool_size: int = Field(default=10, ge=1, le=100, description="Connection pool size")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Operation timeout")

    # Redis-specific
    redis_host: Optional[str] = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0)
    redis_password: Optional[str] = None
    redis_ssl: bool = False


class AbstractStorageProvider(ABC):
    """
    Abstract storage provider.

    All storage backends must implement this interface.
    Supports:
    - Key-value operations, including an atomic set-if-absent
    - Hash operations (for records and indexes)
    - List operations (for per-recipient queues)
    - TTL support
    - Async operations
    """

    def __init__(self, config: StorageConfig):
        """Initialize storage provider with configuration."""
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to storage backend."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to storage backend."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage backend is healthy."""
        pass

    # Key-Value Operations

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Set value with optional TTL."""
        pass

    @abstractmethod
    async def set_if_absent(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Atomically set *key* only if it does not exist.

        Returns True when the value was written, False when the key
        already held a value (which is left unchanged).
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        pass

    # Hash Operations

    @abstractmethod
    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get hash field value."""
        pass

    @abstractmethod
    async def hset(self, key: str, field: str, value: str) -> bool:
        """Set hash field value."""
        pass

    @abstractmethod
    async def hgetall(self, key: str) -> dict[str, str]:
        """Get all hash fields."""
        pass

    @abstractmethod
    async def hdel(self, key: str, field: str) -> bool:
        """Delete hash field."""
        pass

    @abstractmethod
    async def hkeys(self, key: str) -> list[str]:
        """Get all hash field names."""
        pass

    # List Operations

    @abstractmethod
    async def rpush(self, key: str, value: str) -> int:
        """Push value to tail of list. Returns new list length."""
        pass

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop]."""
        pass

    @abstractmethod
    async def llen(self, key: str) -> int:
        """Get list length."""
        pass

    @abstractmethod
    async def lrem(self, key: str, value: str) -> int:
        """Remove every occurrence of *value* from the list. Returns count removed."""
        pass
