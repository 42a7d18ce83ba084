# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""Shared defaults for settlement, draining and evolution tracking."""

from decimal import Decimal

# Queue draining
DEFAULT_MAX_RETRIES = 5
DEFAULT_DRAIN_CONCURRENCY = 4
DEFAULT_BACKOFF_BASE_SECONDS = 5.0
DEFAULT_BACKOFF_CAP_SECONDS = 300.0
DEFAULT_DRAIN_INTERVAL_SECONDS = 10.0

# External call bounds
DEFAULT_SETTLEMENT_TIMEOUT_SECONDS = 30.0
DEFAULT_EVALUATOR_TIMEOUT_SECONDS = 60.0
DEFAULT_LEASE_TTL_SECONDS = 120

# Evolution
DEFAULT_EVOLUTION_MAX_RETRIES = 3

# Amounts
DEFAULT_MAX_REWARD_AMOUNT = Decimal("10000")
DEFAULT_BASE_ACTIVITY_REWARD = Decimal("1")

GRADE_MULTIPLIERS: dict[str, Decimal] = {
    "S": Decimal("10"),
    "A": Decimal("5"),
    "B": Decimal("2"),
    "C": Decimal("1"),
}

DEFAULT_KEY_PREFIX = "rewardsync:"
