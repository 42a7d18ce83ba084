"""Tests for the reward ledger."""

import asyncio

import pytest

from rewardsync.classifier import classify
from rewardsync.exceptions import LedgerError, WalletRejectedError
from rewardsync.models import DistributionRecord, RewardStatus, RewardType

from conftest import make_event


class TestCommit:
    @pytest.mark.asyncio
    async def test_record_absent(self, ledger):
        assert await ledger.record("missing", RewardType.ACTIVITY_REWARD) is None

    @pytest.mark.asyncio
    async def test_first_commit_wins(self, ledger):
        event = make_event()
        distributed = DistributionRecord.distributed(event, "0xabc")
        failed = DistributionRecord.failed(event, classify(WalletRejectedError()))

        assert await ledger.commit(event.source_id, event.reward_type, distributed) is distributed
        existing = await ledger.commit(event.source_id, event.reward_type, failed)

        assert existing.status is RewardStatus.DISTRIBUTED
        assert existing.settlement_hash == "0xabc"
        assert await ledger.record(event.source_id, event.reward_type) == existing

    @pytest.mark.asyncio
    async def test_reward_types_are_separate_keys(self, ledger):
        activity = make_event("block-7", RewardType.ACTIVITY_REWARD)
        refinement = make_event("block-7", RewardType.REFINEMENT_REWARD)
        await ledger.commit("block-7", RewardType.ACTIVITY_REWARD, DistributionRecord.distributed(activity, "0x1"))
        await ledger.commit("block-7", RewardType.REFINEMENT_REWARD, DistributionRecord.distributed(refinement, "0x2"))

        assert (await ledger.record("block-7", RewardType.ACTIVITY_REWARD)).settlement_hash == "0x1"
        assert (await ledger.record("block-7", RewardType.REFINEMENT_REWARD)).settlement_hash == "0x2"

    @pytest.mark.asyncio
    async def test_commit_rejects_foreign_outcome(self, ledger):
        record = DistributionRecord.distributed(make_event("a"), "0x1")
        with pytest.raises(LedgerError):
            await ledger.commit("b", RewardType.ACTIVITY_REWARD, record)

    @pytest.mark.asyncio
    async def test_concurrent_commits_agree(self, ledger):
        event = make_event()
        candidates = [DistributionRecord.distributed(event, f"0x{i}") for i in range(10)]
        results = await asyncio.gather(
            *(ledger.commit(event.source_id, event.reward_type, c) for c in candidates)
        )
        hashes = {r.settlement_hash for r in results}
        assert len(hashes) == 1
        assert (await ledger.record(event.source_id, event.reward_type)).settlement_hash in hashes


class TestListing:
    @pytest.mark.asyncio
    async def test_records_and_failed_records(self, ledger):
        ok = make_event("ok")
        bad = make_event("bad")
        await ledger.commit("ok", ok.reward_type, DistributionRecord.distributed(ok, "0x1"))
        await ledger.commit("bad", bad.reward_type, DistributionRecord.failed(bad, classify(WalletRejectedError())))

        assert {r.source_id for r in await ledger.records()} == {"ok", "bad"}
        failed = await ledger.failed_records()
        assert [r.source_id for r in failed] == ["bad"]
        assert failed[0].error_kind == "WALLET_REJECTED"
        assert [r.source_id for r in await ledger.records(RewardStatus.DISTRIBUTED)] == ["ok"]


class TestSubmissionMarkers:
    @pytest.mark.asyncio
    async def test_mark_and_clear(self, ledger):
        assert await ledger.submission("s", RewardType.ACTIVITY_REWARD) is None
        await ledger.mark_submitted("s", RewardType.ACTIVITY_REWARD, "0xfeed")
        assert await ledger.submission("s", RewardType.ACTIVITY_REWARD) == "0xfeed"
        assert await ledger.submission("s", RewardType.REFINEMENT_REWARD) is None
        await ledger.clear_submission("s", RewardType.ACTIVITY_REWARD)
        assert await ledger.submission("s", RewardType.ACTIVITY_REWARD) is None


class TestLeases:
    @pytest.mark.asyncio
    async def test_lease_is_exclusive(self, ledger):
        assert await ledger.acquire_lease("s", RewardType.ACTIVITY_REWARD, "worker-a")
        assert not await ledger.acquire_lease("s", RewardType.ACTIVITY_REWARD, "worker-b")

    @pytest.mark.asyncio
    async def test_only_owner_releases(self, ledger):
        await ledger.acquire_lease("s", RewardType.ACTIVITY_REWARD, "worker-a")
        await ledger.release_lease("s", RewardType.ACTIVITY_REWARD, "worker-b")
        assert not await ledger.acquire_lease("s", RewardType.ACTIVITY_REWARD, "worker-b")

        await ledger.release_lease("s", RewardType.ACTIVITY_REWARD, "worker-a")
        assert await ledger.acquire_lease("s", RewardType.ACTIVITY_REWARD, "worker-b")
