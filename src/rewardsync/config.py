# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Settlement configuration.

A single pydantic model gathers every tunable of the settlement engine
and can be loaded from (and saved to) YAML.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_BASE_ACTIVITY_REWARD,
    DEFAULT_DRAIN_CONCURRENCY,
    DEFAULT_DRAIN_INTERVAL_SECONDS,
    DEFAULT_EVALUATOR_TIMEOUT_SECONDS,
    DEFAULT_EVOLUTION_MAX_RETRIES,
    DEFAULT_LEASE_TTL_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_REWARD_AMOUNT,
    DEFAULT_SETTLEMENT_TIMEOUT_SECONDS,
)
from .networks import DEFAULT_NETWORKS, NetworkConfig, NetworkRegistry
from .storage import StorageConfig


class SettlementConfig(BaseModel):
    """Tunables for dispatch, draining and evolution tracking."""

    storage: StorageConfig = Field(default_factory=StorageConfig, description="Storage backend")
    networks: list[NetworkConfig] = Field(
        default_factory=lambda: list(DEFAULT_NETWORKS), description="Supported networks"
    )

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, description="Failed attempts before FAILED_TERMINAL")
    drain_concurrency: int = Field(default=DEFAULT_DRAIN_CONCURRENCY, ge=1, description="Recipients drained at once")
    drain_interval_seconds: float = Field(default=DEFAULT_DRAIN_INTERVAL_SECONDS, gt=0)
    backoff_base_seconds: float = Field(default=DEFAULT_BACKOFF_BASE_SECONDS, ge=0)
    backoff_cap_seconds: float = Field(default=DEFAULT_BACKOFF_CAP_SECONDS, ge=0)

    settlement_timeout_seconds: float = Field(default=DEFAULT_SETTLEMENT_TIMEOUT_SECONDS, gt=0)
    evaluator_timeout_seconds: float = Field(default=DEFAULT_EVALUATOR_TIMEOUT_SECONDS, gt=0)
    lease_ttl_seconds: int = Field(default=DEFAULT_LEASE_TTL_SECONDS, ge=1)

    evolution_max_retries: int = Field(default=DEFAULT_EVOLUTION_MAX_RETRIES, ge=0)
    evolution_retry_base_seconds: Optional[float] = Field(
        default=None, ge=0, description="Overrides the classified suggested delay"
    )

    max_reward_amount: Decimal = Field(default=DEFAULT_MAX_REWARD_AMOUNT, gt=0)
    base_activity_reward: Decimal = Field(default=DEFAULT_BASE_ACTIVITY_REWARD, gt=0)

    def network_registry(self) -> NetworkRegistry:
        return NetworkRegistry(self.networks)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SettlementConfig":
        """Load a SettlementConfig from a YAML file."""
        path = Path(path)
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: str | Path) -> None:
        """Save this SettlementConfig to a YAML file."""
        path = Path(path)
        data = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
