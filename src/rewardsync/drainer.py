# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Queue Drainer.

Replays the offline queue through the dispatcher once settlement becomes
available again. Recipients drain concurrently (bounded by a semaphore);
events of a single recipient drain strictly in FIFO order, and a failed
attempt stops that recipient for the rest of the cycle behind a capped
exponential backoff window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .classifier import backoff_delay, format_for_log
from .collaborators import Connection, WalletProvider
from .constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_DRAIN_CONCURRENCY,
    DEFAULT_DRAIN_INTERVAL_SECONDS,
    DEFAULT_MAX_RETRIES,
)
from .dispatcher import DistributionDispatcher, apply_outcome
from .events import EVENT_QUEUE_DRAINED, Event, EventBus
from .models import OutcomeKind, utcnow
from .observability import MetricsCollector
from .queue import OfflineQueue

logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    """Summary of one drain cycle."""

    recipients: int = 0
    settled: int = 0
    failed: int = 0
    retried: int = 0
    deferred: int = 0
    skipped_recipients: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.settled + self.failed


class QueueDrainer:
    """Drains the offline queue on reconnect and on a periodic schedule.

    Args:
        queue: The offline queue to drain.
        dispatcher: Dispatcher used for every replay attempt.
        max_retries: Failed attempts allowed before an event is forced to
            ``FAILED_TERMINAL``; the event is attempted ``max_retries + 1``
            times in total.
        concurrency: Recipients drained at the same time.
        backoff_base_seconds: Minimum backoff base; an error's
            ``suggested_delay`` raises it.
        backoff_cap_seconds: Upper bound of any backoff window.
        clock: Monotonic clock used for backoff windows.
        bus: Optional event bus for ``queue.drained`` notifications.
        metrics: Optional Prometheus collector.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        dispatcher: DistributionDispatcher,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        concurrency: int = DEFAULT_DRAIN_CONCURRENCY,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._dispatcher = dispatcher
        self._max_retries = max_retries
        self._concurrency = concurrency
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._clock = clock
        self._bus = bus
        self._metrics = metrics

        self._not_before: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._pending_drain = False
        self._loop_task: Optional[asyncio.Task[None]] = None

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    def backoff_until(self, recipient: str) -> Optional[float]:
        """Clock value before which *recipient* will not be touched, if any."""
        return self._not_before.get(recipient)

    # -- Drain cycle ----------------------------------------------------------

    async def drain_all(self) -> DrainReport:
        """Run one drain cycle over every recipient with queued rewards."""
        async with self._lock:
            started = time.perf_counter()
            report = DrainReport()
            recipients = sorted(await self._queue.list_recipients())
            report.recipients = len(recipients)
            semaphore = asyncio.Semaphore(self._concurrency)

            async def worker(recipient: str) -> None:
                async with semaphore:
                    await self._drain_recipient(recipient, report)

            results = await asyncio.gather(
                *(worker(r) for r in recipients), return_exceptions=True
            )
            for recipient, result in zip(recipients, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    logger.error("Draining rewards for %s failed: %r", recipient, result)
                    report.errors.append(f"{recipient}: {result}")

            report.duration_seconds = time.perf_counter() - started
            if self._metrics is not None:
                self._metrics.observe_drain(report.duration_seconds)
                self._metrics.set_queue_depth(await self._queue.size())
            if report.recipients:
                logger.info(
                    "Drain finished: %d settled, %d failed, %d retrying, %d deferred, %d in backoff",
                    report.settled,
                    report.failed,
                    report.retried,
                    report.deferred,
                    report.skipped_recipients,
                )
            if self._bus is not None:
                self._bus.emit(
                    Event(
                        event_type=EVENT_QUEUE_DRAINED,
                        source="drainer",
                        payload={
                            "recipients": report.recipients,
                            "settled": report.settled,
                            "failed": report.failed,
                            "retried": report.retried,
                            "deferred": report.deferred,
                        },
                    )
                )
            return report

    async def _drain_recipient(self, recipient: str, report: DrainReport) -> None:
        not_before = self._not_before.get(recipient)
        if not_before is not None and self._clock() < not_before:
            report.skipped_recipients += 1
            return
        self._not_before.pop(recipient, None)

        while True:
            event = await self._queue.peek_next(recipient)
            if event is None:
                return

            outcome = await self._dispatcher.dispatch(event)
            if outcome.kind is not OutcomeKind.QUEUE:
                apply_outcome(event, outcome)
                await self._queue.remove(event.id)
                if outcome.kind is OutcomeKind.SUCCESS:
                    report.settled += 1
                else:
                    report.failed += 1
                continue

            if outcome.error is None:
                # Nothing was attempted; keep the head and its retry budget
                report.deferred += 1
                return

            error = outcome.error
            event.record_attempt(error.kind, at=utcnow())
            if event.retry_count > self._max_retries:
                logger.error(
                    "Reward %s exhausted %d retries: %s",
                    event.id,
                    self._max_retries,
                    format_for_log(error),
                )
                final = await self._dispatcher.force_terminal(event, error)
                apply_outcome(event, final)
                await self._queue.remove(event.id)
                report.failed += 1
                continue

            await self._queue.update(event)
            delay = backoff_delay(
                max(self._backoff_base, error.suggested_delay),
                event.retry_count,
                self._backoff_cap,
            )
            self._not_before[recipient] = self._clock() + delay
            report.retried += 1
            if self._metrics is not None:
                self._metrics.record_retry(error.kind.value)
            logger.warning(
                "Reward %s attempt %d failed (%s); backing off %s for %.1fs",
                event.id,
                event.retry_count,
                error.kind.value,
                recipient,
                delay,
            )
            return

    # -- Triggers -------------------------------------------------------------

    def attach(self, wallet: WalletProvider) -> None:
        """Drain whenever *wallet* (re)connects."""
        wallet.on_connection_change(self._on_connection_change)

    def _on_connection_change(self, connection: Optional[Connection]) -> None:
        if connection is None:
            logger.info("Wallet disconnected; rewards will be queued")
            return
        logger.info("Wallet connected on chain %d; draining offline queue", connection.chain_id)
        self.request_drain()

    def request_drain(self) -> asyncio.Task[None]:
        """Schedule a background drain.

        Requests arriving while a drain runs coalesce into a single
        follow-up cycle.
        """
        if self._drain_task is not None and not self._drain_task.done():
            self._pending_drain = True
            return self._drain_task
        self._drain_task = asyncio.get_running_loop().create_task(self._background_drain())
        return self._drain_task

    async def _background_drain(self) -> None:
        while True:
            self._pending_drain = False
            try:
                await self.drain_all()
            except Exception:
                logger.exception("Background queue drain failed")
            if not self._pending_drain:
                return

    def start(self, interval_seconds: float = DEFAULT_DRAIN_INTERVAL_SECONDS) -> None:
        """Start the periodic drain loop."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run(interval_seconds))
        logger.info("Started queue drain loop every %.1fs", interval_seconds)

    async def _run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.request_drain()

    async def stop(self) -> None:
        """Stop the periodic loop and any background drain."""
        for task in (self._loop_task, self._drain_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._drain_task = None
