# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Event bus for reward and evolution notifications.

Settlement components report state transitions through a bus with
glob-style subscriptions, so they never hold references to their
observers and an observer bug never breaks a transition.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# Standard event types
EVENT_REWARD_QUEUED = "reward.queued"
EVENT_REWARD_DISTRIBUTED = "reward.distributed"
EVENT_REWARD_FAILED = "reward.failed"
EVENT_QUEUE_DRAINED = "queue.drained"
EVENT_EVOLUTION_PROGRESS = "evolution.progress"
EVENT_EVOLUTION_COMPLETED = "evolution.completed"
EVENT_EVOLUTION_CANCELLED = "evolution.cancelled"
EVENT_EVOLUTION_FAILED = "evolution.failed"

ALL_EVENT_TYPES = [
    EVENT_REWARD_QUEUED,
    EVENT_REWARD_DISTRIBUTED,
    EVENT_REWARD_FAILED,
    EVENT_QUEUE_DRAINED,
    EVENT_EVOLUTION_PROGRESS,
    EVENT_EVOLUTION_COMPLETED,
    EVENT_EVOLUTION_CANCELLED,
    EVENT_EVOLUTION_FAILED,
]


@dataclass
class Event:
    """An event emitted by a RewardSync component."""

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: f"evt-{time.monotonic_ns()}")


EventHandler = Callable[[Event], Any]


class EventBus(ABC):
    """Abstract base class for event bus implementations."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Emit an event to all matching subscribers."""

    @abstractmethod
    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe a handler to events matching a glob-style pattern.

        Args:
            pattern: Glob-style pattern (e.g., ``reward.*``, ``*``).
            handler: Callable invoked with the matching Event.
        """

    @abstractmethod
    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler from all subscriptions."""


class InMemoryEventBus(EventBus):
    """Synchronous in-process event bus with glob-style pattern matching.

    A failing handler is logged and skipped; it never reaches the
    component that emitted the event. Coroutine handlers are scheduled on
    the running loop and tracked until they finish.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._pending: set[asyncio.Future[Any]] = set()

    def emit(self, event: Event) -> None:
        for pattern, handler in list(self._subscriptions):
            if not fnmatch.fnmatch(event.event_type, pattern):
                continue
            try:
                result = handler(event)
            except Exception:
                logger.exception("Event handler failed for %s event %s", event.event_type, event.event_id)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, event)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscriptions = [
            (p, h) for p, h in self._subscriptions if h is not handler
        ]

    async def flush(self) -> None:
        """Wait for every scheduled coroutine handler to finish."""
        pending = [f for f in self._pending if not f.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [f for f in self._pending if not f.done()]

    def _schedule(self, coro: Any, event: Event) -> None:
        future = asyncio.ensure_future(coro)
        self._pending.add(future)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.error(
                    "Async event handler failed for %s event %s",
                    event.event_type,
                    event.event_id,
                    exc_info=fut.exception(),
                )

        future.add_done_callback(_done)
