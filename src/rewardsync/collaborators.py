# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
External collaborator interfaces.

The wallet, token contract and evaluator are implemented outside this
package; these protocols describe what the engine relies on.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Connection:
    """An established wallet connection."""

    address: str
    chain_id: int


ConnectionCallback = Callable[[Optional[Connection]], Any]


class TransactionStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"


@runtime_checkable
class WalletProvider(Protocol):
    """Wallet/provider capability.

    ``on_connection_change`` callbacks receive the new ``Connection``, or
    ``None`` when the wallet disconnects.
    """

    async def connect(self) -> Connection: ...

    def get_connection(self) -> Optional[Connection]: ...

    async def send_transaction(self, tx: Mapping[str, Any]) -> str: ...

    def on_connection_change(self, callback: ConnectionCallback) -> None: ...


@runtime_checkable
class TokenContract(Protocol):
    """Reward token contract bound to one network."""

    async def mint(self, to: str, amount: Decimal, source_id: str) -> str: ...

    async def balance_of(self, address: str) -> Decimal: ...


@runtime_checkable
class SupportsTransactionStatus(Protocol):
    """Optional contract capability used to resolve submitted-unconfirmed mints."""

    async def transaction_status(self, tx_hash: str) -> TransactionStatus: ...


@runtime_checkable
class Evaluator(Protocol):
    """Scoring/refinement service. Returns at least ``grade`` and ``explanation``."""

    async def evaluate(self, payload: Any) -> Mapping[str, Any]: ...
