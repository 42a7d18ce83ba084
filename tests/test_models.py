"""Tests for reward and evolution models."""

import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from rewardsync.classifier import ErrorKind, classify
from rewardsync.exceptions import TerminalStateError, WalletRejectedError
from rewardsync.models import (
    DistributionOutcome,
    DistributionRecord,
    EvolutionStage,
    OutcomeKind,
    RewardEvent,
    RewardStatus,
    RewardType,
    reward_amount_for_grade,
)

from conftest import ALICE, make_event


class TestRewardEvent:
    def test_defaults(self):
        event = make_event()
        assert event.status is RewardStatus.PENDING
        assert event.retry_count == 0
        assert event.settlement_hash is None
        assert len(event.id) == 32
        assert event.idempotency_key == ("activity-1", RewardType.ACTIVITY_REWARD)

    def test_float_amount_keeps_decimal_precision(self):
        event = RewardEvent(
            source_id="refine-1",
            reward_type=RewardType.REFINEMENT_REWARD,
            recipient=ALICE,
            amount=0.005,
        )
        assert event.amount == Decimal("0.005")

    @pytest.mark.parametrize("amount", [0, -1, "-0.5"])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError):
            RewardEvent(
                source_id="s",
                reward_type=RewardType.ACTIVITY_REWARD,
                recipient=ALICE,
                amount=amount,
            )

    def test_hash_requires_distributed(self):
        with pytest.raises(ValidationError):
            RewardEvent(
                source_id="s",
                reward_type=RewardType.ACTIVITY_REWARD,
                recipient=ALICE,
                amount=1,
                status=RewardStatus.QUEUED,
                settlement_hash="0xabc",
            )

    def test_camel_case_json(self):
        event = make_event()
        event.mark_queued()
        event.record_attempt(ErrorKind.NETWORK_TIMEOUT)
        data = json.loads(event.to_json())
        for key in ("id", "sourceId", "rewardType", "recipient", "amount", "status",
                    "retryCount", "lastAttemptAt", "settlementHash", "createdAt"):
            assert key in data
        assert data["retryCount"] == 1
        assert data["status"] == "QUEUED"
        assert data["lastError"] == "NETWORK_TIMEOUT"

    def test_from_json_restores_event(self):
        event = make_event(amount="0.005")
        event.mark_queued()
        restored = RewardEvent.from_json(event.to_json())
        assert restored == event
        assert restored.amount == Decimal("0.005")

    def test_record_attempt_counts(self):
        event = make_event()
        event.record_attempt()
        event.record_attempt(ErrorKind.RATE_LIMITED)
        assert event.retry_count == 2
        assert event.last_attempt_at is not None
        assert event.last_error == "RATE_LIMITED"

    def test_terminal_event_is_frozen(self):
        event = make_event()
        event.mark_distributed("0xabc")
        assert event.is_terminal
        with pytest.raises(TerminalStateError):
            event.record_attempt()
        with pytest.raises(TerminalStateError):
            event.mark_queued()
        with pytest.raises(TerminalStateError):
            event.mark_failed("UNKNOWN")


class TestDistributionRecord:
    def test_distributed_record(self):
        event = make_event()
        record = DistributionRecord.distributed(event, "0xabc")
        assert record.status is RewardStatus.DISTRIBUTED
        assert record.settlement_hash == "0xabc"
        assert record.idempotency_key == event.idempotency_key
        assert record.event_id == event.id

    def test_failed_record_keeps_user_guidance(self):
        error = classify(WalletRejectedError("denied"))
        record = DistributionRecord.failed(make_event(), error)
        assert record.status is RewardStatus.FAILED_TERMINAL
        assert record.error_kind == "WALLET_REJECTED"
        assert record.user_message == error.user_message
        assert record.actionable == error.actionable

    def test_record_must_be_terminal(self):
        with pytest.raises(ValidationError):
            DistributionRecord(
                source_id="s",
                reward_type=RewardType.ACTIVITY_REWARD,
                status=RewardStatus.QUEUED,
                event_id="e",
                recipient=ALICE,
                amount=Decimal("1"),
            )

    def test_distributed_requires_hash(self):
        with pytest.raises(ValidationError):
            DistributionRecord(
                source_id="s",
                reward_type=RewardType.ACTIVITY_REWARD,
                status=RewardStatus.DISTRIBUTED,
                event_id="e",
                recipient=ALICE,
                amount=Decimal("1"),
            )

    def test_from_json(self):
        record = DistributionRecord.distributed(make_event(), "0xabc")
        assert DistributionRecord.from_json(record.to_json()) == record


class TestDistributionOutcome:
    def test_from_record(self):
        record = DistributionRecord.distributed(make_event(), "0xabc")
        outcome = DistributionOutcome.from_record("e1", record)
        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.settlement_hash == "0xabc"
        assert outcome.attempted

    def test_queue_without_error_was_not_attempted(self):
        outcome = DistributionOutcome(kind=OutcomeKind.QUEUE, event_id="e1")
        assert not outcome.attempted
        assert outcome.settlement_hash is None


class TestRewardAmount:
    @pytest.mark.parametrize(
        "grade, expected",
        [("S", "20"), ("a", "10"), ("B", "4"), ("C", "2"), ("Z", "2"), (None, "2")],
    )
    def test_grade_multipliers(self, grade, expected):
        assert reward_amount_for_grade(Decimal("2"), grade) == Decimal(expected)


class TestEvolutionStage:
    @pytest.mark.parametrize(
        "stage, terminal",
        [
            (EvolutionStage.ANALYZING, False),
            (EvolutionStage.FINALIZING, False),
            (EvolutionStage.COMPLETED, True),
            (EvolutionStage.CANCELLED, True),
            (EvolutionStage.FAILED, True),
        ],
    )
    def test_is_terminal(self, stage, terminal):
        assert stage.is_terminal is terminal
