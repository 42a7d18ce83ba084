# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for RewardSync.

All RewardSync exceptions inherit from RewardSyncError. Collaborators
(wallet, contract, evaluator adapters) raise the ``SettlementError``
family so the error classifier can map failures by type instead of by
message text.
"""

from __future__ import annotations

from typing import Optional


class RewardSyncError(Exception):
    """Base exception for all RewardSync errors."""


class StorageError(RewardSyncError):
    """Errors related to storage backend operations."""


class LedgerError(RewardSyncError):
    """Errors raised by the reward ledger."""


class QueueError(RewardSyncError):
    """Errors raised by the offline reward queue."""


class TerminalStateError(RewardSyncError):
    """Raised when mutating a reward event that already reached a terminal state."""


class EvolutionError(RewardSyncError):
    """Errors related to evolution task tracking."""


class TaskNotFoundError(EvolutionError):
    """Raised when no active evolution task exists for a block."""


class InvalidStageTransitionError(EvolutionError):
    """Raised when an evolution task is moved to a stage out of order."""


class SettlementError(RewardSyncError):
    """Base class for failures reported by external settlement collaborators."""


class NetworkTimeoutError(SettlementError):
    """The chain RPC or evaluator did not answer within the allowed time."""


class WalletRejectedError(SettlementError):
    """The user rejected the request in their wallet."""


class InsufficientFundsError(SettlementError):
    """The signing account cannot pay for the transaction."""


class ContractRevertedError(SettlementError):
    """The contract call reverted on-chain."""

    def __init__(self, reason: str = "", message: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(message or f"execution reverted: {reason}".rstrip(": "))


class RateLimitedError(SettlementError):
    """The upstream endpoint throttled the request."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class CredentialMissingError(SettlementError):
    """Required API credentials are not configured."""


class RewardValidationError(SettlementError):
    """The reward request itself is invalid (bad address, amount over cap)."""


class ConfirmationUnknownError(SettlementError):
    """The transaction was submitted but its receipt could not be confirmed."""

    def __init__(self, tx_hash: str, message: Optional[str] = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(message or f"confirmation unknown for transaction {tx_hash}")


__all__ = [
    "RewardSyncError",
    "StorageError",
    "LedgerError",
    "QueueError",
    "TerminalStateError",
    "EvolutionError",
    "TaskNotFoundError",
    "InvalidStageTransitionError",
    "SettlementError",
    "NetworkTimeoutError",
    "WalletRejectedError",
    "InsufficientFundsError",
    "ContractRevertedError",
    "RateLimitedError",
    "CredentialMissingError",
    "RewardValidationError",
    "ConfirmationUnknownError",
]
