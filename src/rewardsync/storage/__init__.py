# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Storage providers for RewardSync.

Provides the abstract interface the ledger and offline queue persist
through, plus in-memory and Redis implementations.
"""

from .provider import AbstractStorageProvider, StorageConfig
from .memory_provider import MemoryStorageProvider
from .redis_provider import RedisStorageProvider


def create_storage_provider(config: StorageConfig) -> AbstractStorageProvider:
    """Build the provider named by ``config.backend``.

    Raises:
        ValueError: If the backend is not recognised.
    """
    backend = config.backend.lower()
    if backend == "memory":
        return MemoryStorageProvider(config)
    if backend == "redis":
        return RedisStorageProvider(config)
    raise ValueError(f"Unknown storage backend '{config.backend}'. Expected 'memory' or 'redis'")


__all__ = [
    "AbstractStorageProvider",
    "StorageConfig",
    "MemoryStorageProvider",
    "RedisStorageProvider",
    "create_storage_provider",
]
