# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Distribution Dispatcher.

Turns a reward event into at most one on-chain mint. Every dispatch
consults the ledger first, so a key that already reached a terminal
outcome is never minted again, and retryable failures come back as a
``QUEUE`` outcome instead of an exception.

Three guards keep concurrent dispatches of one ``(source_id, reward_type)``
from minting twice:

- an in-process single-flight map: late callers await the first caller's
  future and receive the same outcome;
- a TTL'd ledger lease shared through storage, for dispatchers living in
  other processes;
- the ledger compare-and-set itself, which decides the terminal record.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from decimal import Decimal
from typing import Any, Optional

from .classifier import ClassifiedError, classify, format_for_log
from .collaborators import (
    SupportsTransactionStatus,
    TokenContract,
    TransactionStatus,
    WalletProvider,
)
from .constants import DEFAULT_MAX_REWARD_AMOUNT, DEFAULT_SETTLEMENT_TIMEOUT_SECONDS
from .events import (
    EVENT_REWARD_DISTRIBUTED,
    EVENT_REWARD_FAILED,
    EVENT_REWARD_QUEUED,
    Event,
    EventBus,
)
from .exceptions import ConfirmationUnknownError, RewardValidationError
from .ledger import RewardLedger
from .models import (
    DistributionOutcome,
    DistributionRecord,
    OutcomeKind,
    RewardEvent,
    RewardType,
)
from .networks import NetworkRegistry
from .observability import MetricsCollector
from .queue import OfflineQueue

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

InflightKey = tuple[str, RewardType]


def apply_outcome(event: RewardEvent, outcome: DistributionOutcome) -> None:
    """Mirror a terminal dispatch outcome onto the event itself."""
    if event.is_terminal or outcome.kind is OutcomeKind.QUEUE:
        return
    if outcome.kind is OutcomeKind.SUCCESS and outcome.settlement_hash:
        event.mark_distributed(outcome.settlement_hash)
    elif outcome.kind is OutcomeKind.TERMINAL_FAILURE:
        kind = outcome.record.error_kind if outcome.record else None
        event.mark_failed(kind)


class DistributionDispatcher:
    """Settles reward events against the bound token contract.

    Args:
        ledger: Terminal outcome ledger.
        queue: Offline queue used by :meth:`submit` for deferred events.
        wallet: Wallet whose connection selects the network.
        networks: Registry mapping chain ids to bound contracts.
        settlement_timeout_seconds: Bound on every contract call.
        max_reward_amount: Hard cap checked before minting.
        bus: Optional event bus for reward notifications.
        metrics: Optional Prometheus collector.
        owner_id: Lease owner name; random when omitted.
    """

    def __init__(
        self,
        ledger: RewardLedger,
        queue: OfflineQueue,
        wallet: WalletProvider,
        networks: NetworkRegistry,
        *,
        settlement_timeout_seconds: float = DEFAULT_SETTLEMENT_TIMEOUT_SECONDS,
        max_reward_amount: Decimal = DEFAULT_MAX_REWARD_AMOUNT,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        owner_id: Optional[str] = None,
    ) -> None:
        self._ledger = ledger
        self._queue = queue
        self._wallet = wallet
        self._networks = networks
        self._timeout = settlement_timeout_seconds
        self._max_amount = Decimal(max_reward_amount)
        self._bus = bus
        self._metrics = metrics
        self._owner_id = owner_id or f"dispatcher-{uuid.uuid4().hex[:12]}"
        self._inflight: dict[InflightKey, asyncio.Future[DistributionOutcome]] = {}

    @property
    def ledger(self) -> RewardLedger:
        return self._ledger

    @property
    def queue(self) -> OfflineQueue:
        return self._queue

    def _contract(self) -> tuple[Optional[int], Optional[TokenContract]]:
        connection = self._wallet.get_connection()
        if connection is None:
            return None, None
        return connection.chain_id, self._networks.contract_for(connection.chain_id)

    def is_available(self) -> bool:
        """True when a wallet is connected to a chain with a bound contract."""
        return self._contract()[1] is not None

    def _emit(self, event_type: str, event: RewardEvent, **extra: Any) -> None:
        if self._bus is None:
            return
        payload = {
            "event_id": event.id,
            "source_id": event.source_id,
            "reward_type": event.reward_type.value,
            "recipient": event.recipient,
            "amount": str(event.amount),
        }
        payload.update(extra)
        self._bus.emit(Event(event_type=event_type, source="dispatcher", payload=payload))

    # -- Dispatch -------------------------------------------------------------

    async def dispatch(self, event: RewardEvent) -> DistributionOutcome:
        """Attempt to settle *event*, making zero or one mint call.

        Concurrent calls for the same ``(source_id, reward_type)`` share the
        first caller's attempt and receive its outcome.
        """
        key = event.idempotency_key
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Joining in-flight dispatch for %s/%s", key[1].value, key[0])
            return await asyncio.shield(existing)

        future: asyncio.Future[DistributionOutcome] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            outcome = await self._dispatch(event)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as exc:
            future.set_exception(exc)
            # Joiners re-raise it; mark it retrieved for the no-joiner case
            future.exception()
            raise
        else:
            future.set_result(outcome)
        finally:
            self._inflight.pop(key, None)

        if self._metrics is not None:
            self._metrics.record_dispatch(outcome.kind.value)
        return outcome

    async def _dispatch(self, event: RewardEvent) -> DistributionOutcome:
        source_id, reward_type = event.idempotency_key

        existing = await self._ledger.record(source_id, reward_type)
        if existing is not None:
            logger.debug("Ledger already settled %s/%s", reward_type.value, source_id)
            return self._from_record(event, existing)

        chain_id, contract = self._contract()
        if chain_id is None or contract is None:
            logger.info(
                "Settlement unavailable; deferring %s reward %s for %s",
                reward_type.value,
                event.id,
                event.recipient,
            )
            return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id)

        problem = self._validate(event)
        if problem is not None:
            return await self._terminal(event, classify(RewardValidationError(problem)))

        if not await self._ledger.acquire_lease(source_id, reward_type, self._owner_id):
            logger.info("Another dispatcher holds the lease for %s/%s", reward_type.value, source_id)
            return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id)

        try:
            # Re-check under the lease; the holder may have just committed
            existing = await self._ledger.record(source_id, reward_type)
            if existing is not None:
                return self._from_record(event, existing)

            resolved = await self._resolve_submission(event, contract, chain_id)
            if resolved is not None:
                return resolved

            return await self._mint(event, contract, chain_id)
        finally:
            await self._ledger.release_lease(source_id, reward_type, self._owner_id)

    def _validate(self, event: RewardEvent) -> Optional[str]:
        if not _ADDRESS_RE.match(event.recipient):
            return f"invalid recipient address {event.recipient!r}"
        if event.amount > self._max_amount:
            return f"invalid amount {event.amount}: exceeds cap of {self._max_amount}"
        return None

    async def _mint(self, event: RewardEvent, contract: TokenContract, chain_id: int) -> DistributionOutcome:
        try:
            tx_hash = await asyncio.wait_for(
                contract.mint(event.recipient, event.amount, event.source_id),
                timeout=self._timeout,
            )
        except ConfirmationUnknownError as exc:
            await self._ledger.mark_submitted(event.source_id, event.reward_type, exc.tx_hash)
            error = classify(exc, event.retry_count)
            return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id, error=error)
        except Exception as exc:
            error = classify(exc, event.retry_count)
            if error.retryable:
                logger.warning(
                    "Retryable failure settling %s: %s", event.id, format_for_log(error)
                )
                return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id, error=error)
            return await self._terminal(event, error)

        return await self._commit_distributed(event, tx_hash, chain_id)

    async def _resolve_submission(
        self, event: RewardEvent, contract: TokenContract, chain_id: int
    ) -> Optional[DistributionOutcome]:
        """Settle a previously submitted, unconfirmed mint.

        Returns None when a fresh mint should be attempted.
        """
        tx_hash = await self._ledger.submission(event.source_id, event.reward_type)
        if tx_hash is None:
            return None

        pending = classify(ConfirmationUnknownError(tx_hash), event.retry_count)
        if not isinstance(contract, SupportsTransactionStatus):
            logger.warning("Cannot query status of %s; keeping %s queued", tx_hash, event.id)
            return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id, error=pending)

        try:
            status = await asyncio.wait_for(
                contract.transaction_status(tx_hash), timeout=self._timeout
            )
        except Exception as exc:
            error = classify(exc, event.retry_count)
            logger.warning("Status query for %s failed: %s", tx_hash, format_for_log(error))
            return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id, error=error)

        status = TransactionStatus(status)
        if status is TransactionStatus.CONFIRMED:
            return await self._commit_distributed(event, tx_hash, chain_id)
        if status in (TransactionStatus.FAILED, TransactionStatus.NOT_FOUND):
            logger.info("Submitted mint %s is %s; minting %s again", tx_hash, status.value, event.id)
            await self._ledger.clear_submission(event.source_id, event.reward_type)
            return None
        return DistributionOutcome(kind=OutcomeKind.QUEUE, event_id=event.id, error=pending)

    async def _commit_distributed(self, event: RewardEvent, tx_hash: str, chain_id: int) -> DistributionOutcome:
        record = DistributionRecord.distributed(event, tx_hash)
        committed = await self._ledger.commit(event.source_id, event.reward_type, record)
        await self._ledger.clear_submission(event.source_id, event.reward_type)
        if committed is not record:
            return self._from_record(event, committed)

        explorer_url = self._networks.explorer_url(chain_id, tx_hash)
        logger.info(
            "Distributed %s %s to %s in %s", event.amount, event.reward_type.value, event.recipient, tx_hash
        )
        self._emit(
            EVENT_REWARD_DISTRIBUTED,
            event,
            settlement_hash=tx_hash,
            explorer_url=explorer_url,
        )
        return DistributionOutcome(
            kind=OutcomeKind.SUCCESS,
            event_id=event.id,
            record=committed,
            explorer_url=explorer_url,
        )

    async def _terminal(self, event: RewardEvent, error: ClassifiedError) -> DistributionOutcome:
        record = DistributionRecord.failed(event, error)
        submitted = await self._ledger.submission(event.source_id, event.reward_type)
        if submitted is not None:
            # Keep the unconfirmed hash visible for manual review
            record = record.model_copy(update={"settlement_hash": submitted})

        committed = await self._ledger.commit(event.source_id, event.reward_type, record)
        if committed is not record:
            return self._from_record(event, committed)

        logger.error("Reward %s failed terminally: %s", event.id, format_for_log(error))
        self._emit(
            EVENT_REWARD_FAILED,
            event,
            error_kind=error.kind.value,
            user_message=error.user_message,
            actionable=error.actionable,
        )
        return DistributionOutcome(
            kind=OutcomeKind.TERMINAL_FAILURE,
            event_id=event.id,
            record=committed,
            error=error,
        )

    def _from_record(self, event: RewardEvent, record: DistributionRecord) -> DistributionOutcome:
        outcome = DistributionOutcome.from_record(event.id, record)
        connection = self._wallet.get_connection()
        if outcome.settlement_hash and connection is not None and outcome.kind is OutcomeKind.SUCCESS:
            outcome.explorer_url = self._networks.explorer_url(connection.chain_id, outcome.settlement_hash)
        return outcome

    # -- Entry points used by the drainer and the service ---------------------

    async def force_terminal(self, event: RewardEvent, error: ClassifiedError) -> DistributionOutcome:
        """Commit FAILED_TERMINAL for *event* (retry exhaustion)."""
        return await self._terminal(event, error)

    async def submit(self, event: RewardEvent) -> DistributionOutcome:
        """Dispatch *event*, parking it in the offline queue on ``QUEUE``.

        Never raises for retryable collaborator failures.
        """
        outcome = await self.dispatch(event)
        if outcome.kind is OutcomeKind.QUEUE:
            if outcome.error is not None:
                event.record_attempt(outcome.error.kind)
            await self._queue.enqueue(event)
            self._emit(
                EVENT_REWARD_QUEUED,
                event,
                retry_count=event.retry_count,
                error_kind=outcome.error.kind.value if outcome.error else None,
            )
        else:
            apply_outcome(event, outcome)
        return outcome
