# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
In-Memory Storage Provider.

Simple in-memory implementation for development and testing.
"""

import time
from collections import defaultdict
from typing import Optional

from .provider import AbstractStorageProvider, StorageConfig


class MemoryStorageProvider(AbstractStorageProvider):
    """
    In-memory storage provider.

    Uses Python dictionaries for storage. Data is lost on restart.
    Suitable for development and testing only.

    No method awaits internally, so each call runs without interleaving
    on the event loop; ``set_if_absent`` is therefore atomic.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        """Initialize in-memory storage."""
        super().__init__(config or StorageConfig(backend="memory"))
        self._data: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self._lists: dict[str, list[str]] = defaultdict(list)
        self._ttls: dict[str, float] = {}
        self._connected = False

    async def connect(self) -> None:
        """Establish connection (no-op for memory)."""
        self._connected = True

    async def disconnect(self) -> None:
        """Close connection (no-op for memory)."""
        self._connected = False

    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        return self._connected

    def _expire(self, key: str) -> None:
        deadline = self._ttls.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self._data.pop(key, None)
            del self._ttls[key]

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        self._expire(key)
        return self._data.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Set value with optional TTL."""
        self._data[key] = value
        if ttl_seconds is not None:
            self._ttls[key] = time.monotonic() + ttl_seconds
        else:
            self._ttls.pop(key, None)
        return True

    async def set_if_absent(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Set value only if the key is missing."""
        self._expire(key)
        if key in self._data:
            return False
        self._data[key] = value
        if ttl_seconds is not None:
            self._ttls[key] = time.monotonic() + ttl_seconds
        return True

    async def delete(self, key: str) -> bool:
        """Delete key."""
        self._ttls.pop(key, None)
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def exists(self, key: str) -> bool:
        """Check if key exists."""
        self._expire(key)
        return key in self._data

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get hash field value."""
        return self._hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value: str) -> bool:
        """Set hash field value."""
        self._hashes[key][field] = value
        return True

    async def hgetall(self, key: str) -> dict[str, str]:
        """Get all hash fields."""
        return dict(self._hashes.get(key, {}))

    async def hdel(self, key: str, field: str) -> bool:
        """Delete hash field."""
        if key in self._hashes and field in self._hashes[key]:
            del self._hashes[key][field]
            return True
        return False

    async def hkeys(self, key: str) -> list[str]:
        """Get all hash field names."""
        return list(self._hashes.get(key, {}).keys())

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        """Push value to tail of list."""
        self._lists[key].append(value)
        return len(self._lists[key])

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop]."""
        lst = self._lists.get(key, [])
        if stop == -1:
            return lst[start:]
        return lst[start:stop + 1]

    async def llen(self, key: str) -> int:
        """Get list length."""
        return len(self._lists.get(key, []))

    async def lrem(self, key: str, value: str) -> int:
        """Remove all occurrences of value from the list."""
        lst = self._lists.get(key)
        if not lst:
            return 0
        kept = [item for item in lst if item != value]
        removed = len(lst) - len(kept)
        self._lists[key] = kept
        return removed
