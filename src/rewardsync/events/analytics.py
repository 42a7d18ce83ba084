# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Settlement analytics subscriber.

Subscribes to all RewardSync events and keeps running totals plus a
rolling per-minute settlement rate.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal

from .bus import (
    EVENT_EVOLUTION_CANCELLED,
    EVENT_EVOLUTION_COMPLETED,
    EVENT_EVOLUTION_FAILED,
    EVENT_REWARD_DISTRIBUTED,
    EVENT_REWARD_FAILED,
    EVENT_REWARD_QUEUED,
    Event,
    EventBus,
)


@dataclass
class AnalyticsSnapshot:
    """Point-in-time analytics snapshot."""

    distributed: int = 0
    queued: int = 0
    failed: int = 0
    distributed_amount: Decimal = Decimal("0")
    distributed_per_min_1m: float = 0.0
    distributed_per_min_15m: float = 0.0
    evolutions_completed: int = 0
    evolutions_failed: int = 0
    evolutions_cancelled: int = 0
    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)


class SettlementAnalytics:
    """Aggregates reward and evolution events from a bus.

    Args:
        bus: The event bus to subscribe to.
    """

    WINDOW_1M = 60
    WINDOW_15M = 900

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._total_events = 0
        self._events_by_type: dict[str, int] = {}
        self._counts: dict[str, int] = {}
        self._distributed_amount = Decimal("0")
        self._settlements: deque[float] = deque()

        self._bus.subscribe("*", self._handle_event)

    def _handle_event(self, event: Event) -> None:
        now = time.monotonic()
        self._total_events += 1
        self._events_by_type[event.event_type] = (
            self._events_by_type.get(event.event_type, 0) + 1
        )
        self._counts[event.event_type] = self._counts.get(event.event_type, 0) + 1

        if event.event_type == EVENT_REWARD_DISTRIBUTED:
            self._settlements.append(now)
            amount = event.payload.get("amount")
            if amount is not None:
                self._distributed_amount += Decimal(str(amount))

    def _count_in_window(self, window_seconds: int) -> int:
        cutoff = time.monotonic() - window_seconds
        while self._settlements and self._settlements[0] < cutoff - self.WINDOW_15M:
            self._settlements.popleft()
        return sum(1 for ts in self._settlements if ts >= cutoff)

    def snapshot(self) -> AnalyticsSnapshot:
        return AnalyticsSnapshot(
            distributed=self._counts.get(EVENT_REWARD_DISTRIBUTED, 0),
            queued=self._counts.get(EVENT_REWARD_QUEUED, 0),
            failed=self._counts.get(EVENT_REWARD_FAILED, 0),
            distributed_amount=self._distributed_amount,
            distributed_per_min_1m=self._count_in_window(self.WINDOW_1M) / 1.0,
            distributed_per_min_15m=self._count_in_window(self.WINDOW_15M) / 15.0,
            evolutions_completed=self._counts.get(EVENT_EVOLUTION_COMPLETED, 0),
            evolutions_failed=self._counts.get(EVENT_EVOLUTION_FAILED, 0),
            evolutions_cancelled=self._counts.get(EVENT_EVOLUTION_CANCELLED, 0),
            total_events=self._total_events,
            events_by_type=dict(self._events_by_type),
        )

    def detach(self) -> None:
        self._bus.unsubscribe(self._handle_event)
