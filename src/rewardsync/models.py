# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Reward and evolution data model.

Persisted records use camelCase JSON (``sourceId``, ``retryCount``...)
and amounts are ``Decimal`` end to end so retries never accumulate
rounding drift.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .classifier import ClassifiedError, ErrorKind
from .constants import GRADE_MULTIPLIERS
from .exceptions import TerminalStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RewardType(str, Enum):
    ACTIVITY_REWARD = "ACTIVITY_REWARD"
    REFINEMENT_REWARD = "REFINEMENT_REWARD"


class RewardStatus(str, Enum):
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    DISTRIBUTED = "DISTRIBUTED"
    FAILED_TERMINAL = "FAILED_TERMINAL"


TERMINAL_STATUSES = frozenset({RewardStatus.DISTRIBUTED, RewardStatus.FAILED_TERMINAL})


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def _coerce_decimal(value: Any) -> Any:
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class RewardEvent(_RecordModel):
    """A pending claim that some amount of token is owed to a recipient."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source_id: str = Field(min_length=1)
    reward_type: RewardType
    recipient: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    created_at: datetime = Field(default_factory=utcnow)
    status: RewardStatus = RewardStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = None
    settlement_hash: Optional[str] = None
    last_error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_decimal(cls, value: Any) -> Any:
        return _coerce_decimal(value)

    @model_validator(mode="after")
    def _hash_only_when_distributed(self) -> "RewardEvent":
        if self.settlement_hash is not None and self.status is not RewardStatus.DISTRIBUTED:
            raise ValueError("settlement_hash may only be set on DISTRIBUTED events")
        return self

    @property
    def idempotency_key(self) -> tuple[str, RewardType]:
        return (self.source_id, self.reward_type)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise TerminalStateError(
                f"Reward event {self.id} is {self.status.value} and can no longer change"
            )

    def mark_queued(self) -> None:
        self._ensure_mutable()
        self.status = RewardStatus.QUEUED

    def record_attempt(self, error_kind: Optional[ErrorKind] = None, at: Optional[datetime] = None) -> None:
        """Count one failed settlement attempt."""
        self._ensure_mutable()
        self.retry_count += 1
        self.last_attempt_at = at or utcnow()
        if error_kind is not None:
            self.last_error = error_kind.value

    def mark_distributed(self, settlement_hash: str) -> None:
        self._ensure_mutable()
        self.status = RewardStatus.DISTRIBUTED
        self.settlement_hash = settlement_hash

    def mark_failed(self, error_kind: Optional[str] = None) -> None:
        self._ensure_mutable()
        self.status = RewardStatus.FAILED_TERMINAL
        if error_kind is not None:
            self.last_error = error_kind

    @classmethod
    def from_json(cls, raw: str) -> "RewardEvent":
        return cls.model_validate_json(raw)


class DistributionRecord(_RecordModel):
    """Terminal ledger entry for one ``(source_id, reward_type)`` key."""

    source_id: str
    reward_type: RewardType
    status: RewardStatus
    event_id: str
    recipient: str
    amount: Decimal
    settlement_hash: Optional[str] = None
    error_kind: Optional[str] = None
    user_message: Optional[str] = None
    actionable: Optional[str] = None
    committed_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _terminal_only(self) -> "DistributionRecord":
        if self.status not in TERMINAL_STATUSES:
            raise ValueError(f"ledger records must be terminal, got {self.status.value}")
        if self.status is RewardStatus.DISTRIBUTED and not self.settlement_hash:
            raise ValueError("DISTRIBUTED records require a settlement_hash")
        return self

    @property
    def idempotency_key(self) -> tuple[str, RewardType]:
        return (self.source_id, self.reward_type)

    @classmethod
    def distributed(cls, event: RewardEvent, settlement_hash: str) -> "DistributionRecord":
        return cls(
            source_id=event.source_id,
            reward_type=event.reward_type,
            status=RewardStatus.DISTRIBUTED,
            event_id=event.id,
            recipient=event.recipient,
            amount=event.amount,
            settlement_hash=settlement_hash,
        )

    @classmethod
    def failed(cls, event: RewardEvent, error: Optional[ClassifiedError]) -> "DistributionRecord":
        return cls(
            source_id=event.source_id,
            reward_type=event.reward_type,
            status=RewardStatus.FAILED_TERMINAL,
            event_id=event.id,
            recipient=event.recipient,
            amount=event.amount,
            error_kind=error.kind.value if error else None,
            user_message=error.user_message if error else None,
            actionable=error.actionable if error else None,
        )

    @classmethod
    def from_json(cls, raw: str) -> "DistributionRecord":
        return cls.model_validate_json(raw)


class OutcomeKind(str, Enum):
    SUCCESS = "SUCCESS"
    QUEUE = "QUEUE"
    TERMINAL_FAILURE = "TERMINAL_FAILURE"


class DistributionOutcome(BaseModel):
    """Result of one dispatch attempt.

    ``error`` is set on ``QUEUE`` only when a settlement attempt was
    actually made and failed with a retryable error; a ``QUEUE`` with no
    error means the chain was unavailable and nothing was attempted.
    """

    kind: OutcomeKind
    event_id: str
    record: Optional[DistributionRecord] = None
    error: Optional[ClassifiedError] = None
    explorer_url: Optional[str] = None

    @property
    def settlement_hash(self) -> Optional[str]:
        return self.record.settlement_hash if self.record else None

    @property
    def attempted(self) -> bool:
        return self.kind is not OutcomeKind.QUEUE or self.error is not None

    @classmethod
    def from_record(cls, event_id: str, record: DistributionRecord) -> "DistributionOutcome":
        kind = (
            OutcomeKind.SUCCESS
            if record.status is RewardStatus.DISTRIBUTED
            else OutcomeKind.TERMINAL_FAILURE
        )
        return cls(kind=kind, event_id=event_id, record=record)


def reward_amount_for_grade(base_amount: Decimal, grade: Any) -> Decimal:
    """Scale a base reward by the grade multiplier.

    The grade comes straight from the evaluator, so any value is accepted;
    missing, numeric and unknown grades count as 1x.
    """
    key = str(grade).strip().upper() if grade is not None else ""
    multiplier = GRADE_MULTIPLIERS.get(key, Decimal("1"))
    return Decimal(base_amount) * multiplier


# ---------------------------------------------------------------------------
# Evolution
# ---------------------------------------------------------------------------

class EvolutionStage(str, Enum):
    ANALYZING = "ANALYZING"
    SYNTHESIZING = "SYNTHESIZING"
    VALIDATING = "VALIDATING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (EvolutionStage.COMPLETED, EvolutionStage.CANCELLED, EvolutionStage.FAILED)


STAGE_ORDER: tuple[EvolutionStage, ...] = (
    EvolutionStage.ANALYZING,
    EvolutionStage.SYNTHESIZING,
    EvolutionStage.VALIDATING,
    EvolutionStage.FINALIZING,
    EvolutionStage.COMPLETED,
)


class EvolutionTask(_RecordModel):
    """State of one evolution refinement run for a block."""

    task_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    block_id: str = Field(min_length=1)
    recipient: str
    stage: EvolutionStage = EvolutionStage.ANALYZING
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    evaluation: Optional[dict[str, Any]] = None
    reward_event_id: Optional[str] = None


class ProgressEvent(_RecordModel):
    """Progress notification delivered to evolution observers."""

    block_id: str
    stage: EvolutionStage
    progress: int
    message: str
    estimated_remaining: Optional[int] = None
    retry_count: int = 0
    error_kind: Optional[str] = None
    actionable: Optional[str] = None
