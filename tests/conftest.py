"""Shared fixtures and collaborator fakes for the RewardSync test suite."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import pytest

from rewardsync.collaborators import Connection, TransactionStatus
from rewardsync.dispatcher import DistributionDispatcher
from rewardsync.events import Event, InMemoryEventBus
from rewardsync.ledger import RewardLedger
from rewardsync.models import RewardEvent, RewardType
from rewardsync.networks import NetworkRegistry
from rewardsync.queue import OfflineQueue
from rewardsync.storage import MemoryStorageProvider

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40
LOCAL_CHAIN = 1337


class FakeWallet:
    """Wallet whose connection is switched by the test."""

    def __init__(self, connection: Optional[Connection] = None) -> None:
        self._connection = connection
        self._callbacks: list[Callable[[Optional[Connection]], Any]] = []
        self.sent: list[Mapping[str, Any]] = []

    async def connect(self) -> Connection:
        self.set_connection(Connection(address=ALICE, chain_id=LOCAL_CHAIN))
        return self._connection

    def get_connection(self) -> Optional[Connection]:
        return self._connection

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        self.sent.append(tx)
        return f"0x{len(self.sent):064x}"

    def on_connection_change(self, callback: Callable[[Optional[Connection]], Any]) -> None:
        self._callbacks.append(callback)

    def set_connection(self, connection: Optional[Connection]) -> None:
        self._connection = connection
        for callback in self._callbacks:
            callback(connection)

    def disconnect(self) -> None:
        self.set_connection(None)


class FakeContract:
    """Token contract recording every mint call.

    ``failures`` are raised by successive calls (``None`` entries succeed);
    ``fail_with`` is raised by every call.
    """

    def __init__(
        self,
        delay: float = 0.0,
        failures: Optional[list[Optional[BaseException]]] = None,
        fail_with: Optional[BaseException] = None,
    ) -> None:
        self.delay = delay
        self.failures = list(failures or [])
        self.fail_with = fail_with
        self.calls: list[tuple[str, Decimal, str]] = []
        self.balances: dict[str, Decimal] = {}
        self.active = 0
        self.max_active = 0

    async def mint(self, to: str, amount: Decimal, source_id: str) -> str:
        self.calls.append((to, amount, source_id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            if self.failures:
                failure = self.failures.pop(0)
                if failure is not None:
                    raise failure
        finally:
            self.active -= 1
        self.balances[to] = self.balances.get(to, Decimal("0")) + amount
        return f"0x{len(self.calls):064x}"

    async def balance_of(self, address: str) -> Decimal:
        return self.balances.get(address, Decimal("0"))


class StatusContract(FakeContract):
    """Contract that can also report the status of submitted transactions."""

    def __init__(self, statuses: Optional[dict[str, TransactionStatus]] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.statuses = dict(statuses or {})
        self.status_queries: list[str] = []

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        self.status_queries.append(tx_hash)
        return self.statuses.get(tx_hash, TransactionStatus.NOT_FOUND)


class FakeEvaluator:
    """Evaluator returning a fixed grade; ``gate`` holds every call until set."""

    def __init__(
        self,
        result: Optional[dict[str, Any]] = None,
        failures: Optional[list[Optional[BaseException]]] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.result = result or {"grade": "A", "explanation": "Consistent and novel"}
        self.failures = list(failures or [])
        self.gate = gate
        self.calls = 0

    async def evaluate(self, payload: Any) -> Mapping[str, Any]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return dict(self.result)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    source_id: str = "activity-1",
    reward_type: RewardType = RewardType.ACTIVITY_REWARD,
    recipient: str = ALICE,
    amount: Any = "1.5",
) -> RewardEvent:
    return RewardEvent(
        source_id=source_id,
        reward_type=reward_type,
        recipient=recipient,
        amount=Decimal(str(amount)),
    )


def build_dispatcher(ledger, queue, wallet, contract, **kwargs) -> DistributionDispatcher:
    """Dispatcher with *contract* bound on the local chain."""
    registry = NetworkRegistry()
    registry.bind(LOCAL_CHAIN, contract)
    kwargs.setdefault("settlement_timeout_seconds", 1.0)
    return DistributionDispatcher(ledger, queue, wallet, registry, **kwargs)


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Poll *predicate* (sync or async) until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
async def storage():
    """Create and connect a memory storage provider."""
    provider = MemoryStorageProvider()
    await provider.connect()
    yield provider
    await provider.disconnect()


@pytest.fixture
def ledger(storage):
    return RewardLedger(storage)


@pytest.fixture
def queue(storage):
    return OfflineQueue(storage)


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def events(bus):
    """Every event emitted on the bus."""
    received: list[Event] = []
    bus.subscribe("*", received.append)
    return received


@pytest.fixture
def contract():
    return FakeContract()


@pytest.fixture
def wallet():
    return FakeWallet(Connection(address=ALICE, chain_id=LOCAL_CHAIN))


@pytest.fixture
def networks(contract):
    registry = NetworkRegistry()
    registry.bind(LOCAL_CHAIN, contract)
    return registry


@pytest.fixture
def dispatcher(ledger, queue, wallet, networks, bus):
    return DistributionDispatcher(
        ledger,
        queue,
        wallet,
        networks,
        settlement_timeout_seconds=1.0,
        bus=bus,
    )
