# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Offline Queue.

Persisted FIFO of QUEUED reward events, one list per recipient. Event
bodies live in a single hash keyed by event id so status and retry
bookkeeping can be updated in place; the per-recipient lists hold ids
only and define drain order.
"""

from __future__ import annotations

import logging
from typing import Optional

from .constants import DEFAULT_KEY_PREFIX
from .exceptions import QueueError
from .models import RewardEvent
from .storage import AbstractStorageProvider

logger = logging.getLogger(__name__)


class OfflineQueue:
    """Per-recipient FIFO of rewards waiting for settlement."""

    def __init__(self, storage: AbstractStorageProvider, prefix: str = DEFAULT_KEY_PREFIX) -> None:
        self._storage = storage
        self._events_key = f"{prefix}queue:events"
        self._recipients_key = f"{prefix}queue:recipients"
        self._list_prefix = f"{prefix}queue:recipient:"

    def _list_key(self, recipient: str) -> str:
        return f"{self._list_prefix}{recipient}"

    async def enqueue(self, event: RewardEvent) -> RewardEvent:
        """Append *event* to its recipient's queue, marking it QUEUED.

        Re-enqueueing an event that is already queued only updates it in
        place; its position is kept.

        Raises:
            QueueError: If the event is already terminal.
        """
        if event.is_terminal:
            raise QueueError(f"Cannot queue {event.status.value} reward event {event.id}")

        event.mark_queued()
        already_queued = await self._storage.hget(self._events_key, event.id) is not None
        await self._storage.hset(self._events_key, event.id, event.to_json())
        if already_queued:
            return event

        await self._storage.rpush(self._list_key(event.recipient), event.id)
        await self._storage.hset(self._recipients_key, event.recipient, "1")
        logger.info(
            "Queued %s reward %s for %s (source %s)",
            event.reward_type.value,
            event.id,
            event.recipient,
            event.source_id,
        )
        return event

    async def get(self, event_id: str) -> Optional[RewardEvent]:
        raw = await self._storage.hget(self._events_key, event_id)
        return RewardEvent.from_json(raw) if raw is not None else None

    async def peek_next(self, recipient: str) -> Optional[RewardEvent]:
        """Return the oldest queued event for *recipient* without removing it."""
        list_key = self._list_key(recipient)
        while True:
            head = await self._storage.lrange(list_key, 0, 0)
            if not head:
                return None
            event = await self.get(head[0])
            if event is not None:
                return event
            # Body already gone; drop the dangling id and look again
            logger.debug("Dropping dangling queue entry %s for %s", head[0], recipient)
            await self._storage.lrem(list_key, head[0])

    async def update(self, event: RewardEvent) -> None:
        """Persist retry bookkeeping for a queued event.

        Raises:
            QueueError: If the event is not queued.
        """
        if await self._storage.hget(self._events_key, event.id) is None:
            raise QueueError(f"Reward event {event.id} is not queued")
        await self._storage.hset(self._events_key, event.id, event.to_json())

    async def remove(self, event_id: str) -> bool:
        """Remove an event after its terminal outcome was recorded."""
        event = await self.get(event_id)
        if event is None:
            return False
        await self._storage.hdel(self._events_key, event_id)
        list_key = self._list_key(event.recipient)
        await self._storage.lrem(list_key, event_id)
        if await self._storage.llen(list_key) == 0:
            await self._storage.hdel(self._recipients_key, event.recipient)
        logger.debug("Removed reward %s from queue of %s", event_id, event.recipient)
        return True

    async def list_recipients(self) -> set[str]:
        """Recipients with at least one queued event."""
        return set(await self._storage.hkeys(self._recipients_key))

    async def list_events(self, recipient: Optional[str] = None) -> list[RewardEvent]:
        """Queued events in drain order, for one recipient or all of them."""
        recipients = [recipient] if recipient is not None else sorted(await self.list_recipients())
        events: list[RewardEvent] = []
        for r in recipients:
            for event_id in await self._storage.lrange(self._list_key(r), 0, -1):
                event = await self.get(event_id)
                if event is not None:
                    events.append(event)
        return events

    async def size(self) -> int:
        return len(await self._storage.hkeys(self._events_key))
