# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Reward settlement service.

Facade wiring storage, ledger, offline queue, dispatcher, drainer and
evolution tracker together from one ``SettlementConfig``.
"""

from __future__ import annotations

import logging
import time
import uuid
from decimal import Decimal
from typing import Any, Callable, Optional

from .collaborators import Evaluator, WalletProvider
from .config import SettlementConfig
from .dispatcher import DistributionDispatcher
from .drainer import DrainReport, QueueDrainer
from .events import EventBus, InMemoryEventBus
from .evolution import EvolutionStageTracker, TaskHandle
from .exceptions import EvolutionError, LedgerError
from .ledger import RewardLedger
from .models import (
    DistributionOutcome,
    DistributionRecord,
    RewardEvent,
    RewardStatus,
    RewardType,
    reward_amount_for_grade,
)
from .networks import NetworkRegistry
from .observability import MetricsCollector
from .queue import OfflineQueue
from .storage import AbstractStorageProvider

logger = logging.getLogger(__name__)


class RewardSettlementService:
    """Entry point for distributing rewards and running evolutions.

    Args:
        storage: Backend shared by the ledger and the offline queue.
        wallet: Wallet/provider collaborator.
        evaluator: Evaluator collaborator; evolutions are unavailable
            without one.
        config: Settlement tunables.
        networks: Network registry; built from ``config.networks`` when
            omitted.
        bus: Event bus; an ``InMemoryEventBus`` when omitted.
        metrics: Optional Prometheus collector.
        clock: Monotonic clock for drain backoff windows.
    """

    def __init__(
        self,
        storage: AbstractStorageProvider,
        wallet: WalletProvider,
        evaluator: Optional[Evaluator] = None,
        *,
        config: Optional[SettlementConfig] = None,
        networks: Optional[NetworkRegistry] = None,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SettlementConfig()
        self.storage = storage
        self.networks = networks or self.config.network_registry()
        self.bus = bus if bus is not None else InMemoryEventBus()
        self.metrics = metrics
        self._wallet = wallet
        self._attached = False

        prefix = self.config.storage.key_prefix
        self.ledger = RewardLedger(storage, prefix, self.config.lease_ttl_seconds)
        self.queue = OfflineQueue(storage, prefix)
        self.dispatcher = DistributionDispatcher(
            self.ledger,
            self.queue,
            wallet,
            self.networks,
            settlement_timeout_seconds=self.config.settlement_timeout_seconds,
            max_reward_amount=self.config.max_reward_amount,
            bus=self.bus,
            metrics=metrics,
        )
        self.drainer = QueueDrainer(
            self.queue,
            self.dispatcher,
            max_retries=self.config.max_retries,
            concurrency=self.config.drain_concurrency,
            backoff_base_seconds=self.config.backoff_base_seconds,
            backoff_cap_seconds=self.config.backoff_cap_seconds,
            clock=clock,
            bus=self.bus,
            metrics=metrics,
        )
        self.tracker: Optional[EvolutionStageTracker] = None
        if evaluator is not None:
            self.tracker = EvolutionStageTracker(
                evaluator,
                self.dispatcher,
                bus=self.bus,
                evaluator_timeout_seconds=self.config.evaluator_timeout_seconds,
                max_retries=self.config.evolution_max_retries,
                retry_base_seconds=self.config.evolution_retry_base_seconds,
                backoff_cap_seconds=self.config.backoff_cap_seconds,
                base_reward_amount=self.config.base_activity_reward,
                metrics=metrics,
            )

    # -- Lifecycle ------------------------------------------------------------

    async def start(self, periodic: bool = True) -> None:
        """Connect storage, listen for wallet reconnects and start draining."""
        await self.storage.connect()
        if not self._attached:
            self.drainer.attach(self._wallet)
            self._attached = True
        if periodic:
            self.drainer.start(self.config.drain_interval_seconds)
        if self.dispatcher.is_available() and await self.queue.size():
            self.drainer.request_drain()
        logger.info("Reward settlement service started")

    async def stop(self) -> None:
        await self.drainer.stop()
        if self.tracker is not None:
            for task in self.tracker.active_tasks():
                self.tracker.cancel(task.block_id)
        await self.storage.disconnect()
        logger.info("Reward settlement service stopped")

    # -- Rewards --------------------------------------------------------------

    async def distribute_activity_reward(
        self,
        recipient: str,
        source_id: str,
        *,
        base_amount: Optional[Decimal] = None,
        grade: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DistributionOutcome:
        """Distribute an activity reward scaled by *grade*.

        Returns the dispatch outcome; a ``QUEUE`` outcome means the reward
        waits in the offline queue.
        """
        base = base_amount if base_amount is not None else self.config.base_activity_reward
        event = RewardEvent(
            source_id=source_id,
            reward_type=RewardType.ACTIVITY_REWARD,
            recipient=recipient,
            amount=reward_amount_for_grade(base, grade),
            metadata={**(metadata or {}), "grade": grade},
        )
        return await self.dispatcher.submit(event)

    async def distribute_refinement_reward(
        self,
        recipient: str,
        amount: Decimal,
        source_id: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DistributionOutcome:
        event = RewardEvent(
            source_id=source_id,
            reward_type=RewardType.REFINEMENT_REWARD,
            recipient=recipient,
            amount=amount,
            metadata=metadata or {},
        )
        return await self.dispatcher.submit(event)

    def start_evolution(
        self,
        block_id: str,
        initial_input: Any,
        recipient: str,
        *,
        source_id: Optional[str] = None,
        reward_amount: Optional[Decimal] = None,
        auto_complete: bool = True,
    ) -> TaskHandle:
        """Start an evolution run that rewards *recipient* on completion.

        Raises:
            EvolutionError: If the service has no evaluator.
        """
        if self.tracker is None:
            raise EvolutionError("No evaluator configured; evolutions are unavailable")
        return self.tracker.start(
            block_id,
            initial_input,
            recipient,
            source_id=source_id,
            reward_amount=reward_amount,
            auto_complete=auto_complete,
        )

    async def resubmit(self, source_id: str, reward_type: RewardType) -> DistributionOutcome:
        """Re-submit a FAILED_TERMINAL reward under a new source id.

        Raises:
            LedgerError: If the key has no FAILED_TERMINAL record.
        """
        record = await self.ledger.record(source_id, reward_type)
        if record is None or record.status is not RewardStatus.FAILED_TERMINAL:
            status = record.status.value if record else "no record"
            raise LedgerError(
                f"Only FAILED_TERMINAL rewards can be resubmitted; {source_id} has {status}"
            )
        event = RewardEvent(
            source_id=f"{source_id}:resubmit-{uuid.uuid4().hex[:8]}",
            reward_type=record.reward_type,
            recipient=record.recipient,
            amount=record.amount,
            metadata={"resubmitted_from": source_id},
        )
        logger.info("Resubmitting %s as %s", source_id, event.source_id)
        return await self.dispatcher.submit(event)

    # -- Queries --------------------------------------------------------------

    async def pending_rewards(self, recipient: Optional[str] = None) -> list[RewardEvent]:
        return await self.queue.list_events(recipient)

    async def pending_count(self) -> int:
        return await self.queue.size()

    async def failed_rewards(self) -> list[DistributionRecord]:
        return await self.ledger.failed_records()

    # -- Draining -------------------------------------------------------------

    async def force_drain(self) -> DrainReport:
        """Resubmit held completion rewards, then drain the offline queue."""
        if self.tracker is not None:
            await self.tracker.resubmit_unsubmitted()
        return await self.drainer.drain_all()

    @property
    def is_draining(self) -> bool:
        return self.drainer.is_draining
