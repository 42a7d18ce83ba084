# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
RewardSync - offline-tolerant token reward settlement.

Settles token rewards exactly once per ``(source_id, reward_type)``,
queues them while the chain is unreachable, drains the queue on
reconnect and tracks evolution refinement runs that end in a reward.

Components:
- Reward Ledger: compare-and-set record of terminal outcomes
- Distribution Dispatcher: one mint per reward, retryable failures queued
- Offline Queue & Queue Drainer: per-recipient FIFO with capped backoff
- Evolution Stage Tracker: cancellable staged runs with retries
- Error Classifier: closed error taxonomy with retry policy
"""

__version__ = "1.0.0"

from .classifier import ClassifiedError, ErrorKind, Severity, backoff_delay, classify
from .collaborators import (
    Connection,
    Evaluator,
    SupportsTransactionStatus,
    TokenContract,
    TransactionStatus,
    WalletProvider,
)
from .config import SettlementConfig
from .dispatcher import DistributionDispatcher
from .drainer import DrainReport, QueueDrainer
from .evolution import EvolutionStageTracker, TaskHandle
from .ledger import RewardLedger
from .models import (
    DistributionOutcome,
    DistributionRecord,
    EvolutionStage,
    EvolutionTask,
    OutcomeKind,
    ProgressEvent,
    RewardEvent,
    RewardStatus,
    RewardType,
)
from .networks import NetworkConfig, NetworkRegistry
from .queue import OfflineQueue
from .service import RewardSettlementService
from .storage import MemoryStorageProvider, RedisStorageProvider, StorageConfig

__all__ = [
    "__version__",
    # Classifier
    "ClassifiedError",
    "ErrorKind",
    "Severity",
    "classify",
    "backoff_delay",
    # Collaborators
    "Connection",
    "WalletProvider",
    "TokenContract",
    "SupportsTransactionStatus",
    "TransactionStatus",
    "Evaluator",
    # Models
    "RewardEvent",
    "RewardType",
    "RewardStatus",
    "DistributionRecord",
    "DistributionOutcome",
    "OutcomeKind",
    "EvolutionTask",
    "EvolutionStage",
    "ProgressEvent",
    # Components
    "RewardLedger",
    "OfflineQueue",
    "DistributionDispatcher",
    "QueueDrainer",
    "DrainReport",
    "EvolutionStageTracker",
    "TaskHandle",
    "RewardSettlementService",
    # Config and infrastructure
    "SettlementConfig",
    "NetworkConfig",
    "NetworkRegistry",
    "StorageConfig",
    "MemoryStorageProvider",
    "RedisStorageProvider",
]
