# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Reward Ledger.

Idempotency guard recording the terminal distribution outcome per
``(source_id, reward_type)``. ``commit`` is a compare-and-set on storage:
the first terminal outcome written for a key wins and every later commit
returns it unchanged. This is the only state shared between concurrent
dispatch attempts.

Besides terminal records the ledger keeps two kinds of transient keys:

- submission markers, for mints that were sent but never confirmed;
- dispatch leases, so that dispatchers in separate processes sharing the
  same storage never mint one key at the same time.
"""

from __future__ import annotations

import logging
from typing import Optional

from .constants import DEFAULT_KEY_PREFIX, DEFAULT_LEASE_TTL_SECONDS
from .exceptions import LedgerError
from .models import DistributionRecord, RewardStatus, RewardType
from .storage import AbstractStorageProvider

logger = logging.getLogger(__name__)


class RewardLedger:
    """Compare-and-set ledger of terminal reward outcomes."""

    def __init__(
        self,
        storage: AbstractStorageProvider,
        prefix: str = DEFAULT_KEY_PREFIX,
        lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    ) -> None:
        self._storage = storage
        self._prefix = prefix
        self._lease_ttl = lease_ttl_seconds
        self._index_key = f"{prefix}ledger:index"

    @staticmethod
    def _field(source_id: str, reward_type: RewardType) -> str:
        return f"{RewardType(reward_type).value}:{source_id}"

    def _record_key(self, source_id: str, reward_type: RewardType) -> str:
        return f"{self._prefix}ledger:record:{self._field(source_id, reward_type)}"

    def _submission_key(self, source_id: str, reward_type: RewardType) -> str:
        return f"{self._prefix}ledger:submitted:{self._field(source_id, reward_type)}"

    def _lease_key(self, source_id: str, reward_type: RewardType) -> str:
        return f"{self._prefix}ledger:lease:{self._field(source_id, reward_type)}"

    # -- Terminal records -----------------------------------------------------

    async def record(self, source_id: str, reward_type: RewardType) -> Optional[DistributionRecord]:
        """Return the terminal record for the key, or None if none was committed."""
        raw = await self._storage.get(self._record_key(source_id, reward_type))
        if raw is None:
            return None
        return DistributionRecord.from_json(raw)

    async def commit(
        self,
        source_id: str,
        reward_type: RewardType,
        outcome: DistributionRecord,
    ) -> DistributionRecord:
        """Write *outcome* if the key is unrecorded; otherwise return the existing record.

        Raises:
            LedgerError: If *outcome* belongs to a different key.
        """
        if outcome.idempotency_key != (source_id, RewardType(reward_type)):
            raise LedgerError(
                f"Outcome for {outcome.idempotency_key} cannot be committed under "
                f"({source_id}, {RewardType(reward_type).value})"
            )

        key = self._record_key(source_id, reward_type)
        written = await self._storage.set_if_absent(key, outcome.to_json())
        if written:
            await self._storage.hset(
                self._index_key, self._field(source_id, reward_type), outcome.status.value
            )
            logger.info(
                "Ledger committed %s for %s/%s",
                outcome.status.value,
                RewardType(reward_type).value,
                source_id,
            )
            return outcome

        existing = await self.record(source_id, reward_type)
        if existing is None:
            raise LedgerError(f"Ledger record for {source_id} disappeared during commit")
        logger.debug(
            "Ledger already holds %s for %s/%s; commit ignored",
            existing.status.value,
            RewardType(reward_type).value,
            source_id,
        )
        return existing

    async def records(self, status: Optional[RewardStatus] = None) -> list[DistributionRecord]:
        """List committed records, optionally filtered by status, oldest first."""
        index = await self._storage.hgetall(self._index_key)
        results: list[DistributionRecord] = []
        for field_name, indexed_status in index.items():
            if status is not None and indexed_status != RewardStatus(status).value:
                continue
            raw = await self._storage.get(f"{self._prefix}ledger:record:{field_name}")
            if raw is not None:
                results.append(DistributionRecord.from_json(raw))
        return sorted(results, key=lambda r: r.committed_at)

    async def failed_records(self) -> list[DistributionRecord]:
        """Records left in FAILED_TERMINAL, awaiting manual intervention."""
        return await self.records(RewardStatus.FAILED_TERMINAL)

    # -- Submitted, unconfirmed mints -----------------------------------------

    async def mark_submitted(self, source_id: str, reward_type: RewardType, tx_hash: str) -> None:
        await self._storage.set(self._submission_key(source_id, reward_type), tx_hash)
        logger.warning(
            "Mint for %s/%s submitted as %s but not confirmed",
            RewardType(reward_type).value,
            source_id,
            tx_hash,
        )

    async def submission(self, source_id: str, reward_type: RewardType) -> Optional[str]:
        return await self._storage.get(self._submission_key(source_id, reward_type))

    async def clear_submission(self, source_id: str, reward_type: RewardType) -> None:
        await self._storage.delete(self._submission_key(source_id, reward_type))

    # -- Dispatch leases ------------------------------------------------------

    async def acquire_lease(self, source_id: str, reward_type: RewardType, owner: str) -> bool:
        """Claim the right to mint this key for ``lease_ttl_seconds``."""
        return await self._storage.set_if_absent(
            self._lease_key(source_id, reward_type), owner, ttl_seconds=self._lease_ttl
        )

    async def release_lease(self, source_id: str, reward_type: RewardType, owner: str) -> None:
        key = self._lease_key(source_id, reward_type)
        if await self._storage.get(key) == owner:
            await self._storage.delete(key)
