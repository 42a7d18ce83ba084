# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""Event bus and settlement analytics for RewardSync."""

from .analytics import AnalyticsSnapshot, SettlementAnalytics
from .bus import (
    ALL_EVENT_TYPES,
    EVENT_EVOLUTION_CANCELLED,
    EVENT_EVOLUTION_COMPLETED,
    EVENT_EVOLUTION_FAILED,
    EVENT_EVOLUTION_PROGRESS,
    EVENT_QUEUE_DRAINED,
    EVENT_REWARD_DISTRIBUTED,
    EVENT_REWARD_FAILED,
    EVENT_REWARD_QUEUED,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
    "SettlementAnalytics",
    "AnalyticsSnapshot",
    "EVENT_REWARD_QUEUED",
    "EVENT_REWARD_DISTRIBUTED",
    "EVENT_REWARD_FAILED",
    "EVENT_QUEUE_DRAINED",
    "EVENT_EVOLUTION_PROGRESS",
    "EVENT_EVOLUTION_COMPLETED",
    "EVENT_EVOLUTION_CANCELLED",
    "EVENT_EVOLUTION_FAILED",
    "ALL_EVENT_TYPES",
]
