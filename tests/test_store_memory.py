"""Tests for the in-memory job store: claiming, retry policy and leases."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from content_jobs.models.jobs import JobRecord, JobStatus
from content_jobs.services.jobs.memory import MemoryJobStore

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def make_job(job_id, batch_id="batch-1", position=0, created_at=START, title=None):
    return JobRecord(
        id=job_id,
        job_batch_id=batch_id,
        target_document_id="doc-1",
        module_identifier="fractions",
        module_index=0,
        module_title="Fractions",
        subsection_key=job_id,
        subsection_title=title or job_id,
        content_excerpt=f"#### {job_id}",
        position=position,
        created_at=created_at,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    return MemoryJobStore(clock=clock)


class TestInsert:
    @pytest.mark.asyncio
    async def test_duplicate_subsection_in_batch_rejected(self, store):
        await store.insert_many([make_job("a")])

        with pytest.raises(ValueError):
            await store.insert_many([make_job("a")])

    @pytest.mark.asyncio
    async def test_stored_copies_are_isolated(self, store):
        job = make_job("a")
        await store.insert_many([job])
        job.status = JobStatus.FAILED

        stored = await store.get_job("a")
        assert stored.status == JobStatus.PENDING


class TestClaim:
    @pytest.mark.asyncio
    async def test_job_without_target_document_is_not_claimable(self, store):
        loose = make_job("a")
        loose.target_document_id = None
        await store.insert_many([loose])

        assert await store.claim_next("batch-1", "t", 60) is None

        await store.set_target_document("batch-1", "doc-2")
        assert (await store.claim_next("batch-1", "t", 60)).id == "a"

    @pytest.mark.asyncio
    async def test_claims_oldest_first(self, store):
        await store.insert_many(
            [
                make_job("later", created_at=START + timedelta(seconds=1)),
                make_job("second", position=1),
                make_job("first", position=0),
            ]
        )

        claimed = [await store.claim_next("batch-1", f"t{i}", 60) for i in range(3)]

        assert [job.id for job in claimed] == ["first", "second", "later"]
        assert await store.claim_next("batch-1", "t4", 60) is None

    @pytest.mark.asyncio
    async def test_claim_sets_processing_lease_and_token(self, store, clock):
        await store.insert_many([make_job("a")])

        job = await store.claim_next("batch-1", "token-1", 30)

        assert job.status == JobStatus.PROCESSING
        assert job.claim_token == "token-1"
        assert job.started_at == START
        assert job.lease_expires_at == START + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_a_job(self, store):
        await store.insert_many([make_job(f"job-{i}", position=i) for i in range(5)])

        results = await asyncio.gather(
            *[store.claim_next("batch-1", f"token-{i}", 60) for i in range(20)]
        )

        claimed = [job.id for job in results if job is not None]
        assert len(claimed) == 5
        assert len(set(claimed)) == 5

    @pytest.mark.asyncio
    async def test_claim_is_scoped_to_batch(self, store):
        await store.insert_many([make_job("other", batch_id="batch-2")])

        assert await store.claim_next("batch-1", "t", 60) is None
        assert (await store.claim_next(None, "t", 60)).id == "other"


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_requeue_waits_for_backoff(self, store, clock):
        await store.insert_many([make_job("a")])
        job = await store.claim_next("batch-1", "t1", 60)

        updated = await store.mark_failed_or_requeue(job.id, "t1", "timeout", 3, 5)

        assert updated.status == JobStatus.PENDING
        assert updated.attempt_count == 1
        assert updated.last_error == "timeout"
        assert updated.retry_not_before == START + timedelta(seconds=5)
        assert await store.claim_next("batch-1", "t2", 60) is None

        clock.advance(5)
        assert (await store.claim_next("batch-1", "t2", 60)).id == "a"

    @pytest.mark.asyncio
    async def test_always_failing_job_requeues_exactly_budget_times(self, store, clock):
        await store.insert_many([make_job("a")])
        requeues = 0

        while True:
            job = await store.claim_next("batch-1", "t", 60)
            updated = await store.mark_failed_or_requeue(job.id, "t", "boom", 3, 5)
            if updated.status == JobStatus.FAILED:
                break
            requeues += 1
            clock.advance(5)

        assert requeues == 3
        assert updated.attempt_count == 3
        assert updated.completed_at is not None
        clock.advance(60)
        assert await store.claim_next("batch-1", "t", 60) is None

    @pytest.mark.asyncio
    async def test_stale_token_cannot_transition_job(self, store):
        await store.insert_many([make_job("a")])
        await store.claim_next("batch-1", "current", 60)

        assert await store.mark_completed("a", "stale") is False
        assert await store.mark_failed_or_requeue("a", "stale", "x", 3, 5) is None
        assert (await store.get_job("a")).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_mark_completed_clears_claim(self, store):
        await store.insert_many([make_job("a")])
        await store.claim_next("batch-1", "t", 60)

        assert await store.mark_completed("a", "t") is True

        job = await store.get_job("a")
        assert job.status == JobStatus.COMPLETED
        assert job.claim_token is None
        assert job.lease_expires_at is None
        assert await store.mark_completed("a", "t") is False


class TestLeases:
    @pytest.mark.asyncio
    async def test_expired_lease_is_requeued(self, store, clock):
        await store.insert_many([make_job("a"), make_job("b", position=1)])
        await store.claim_next("batch-1", "t1", 10)
        await store.claim_next("batch-1", "t2", 100)

        clock.advance(11)
        expired = await store.expire_stale_leases(3, 5)

        assert [job.id for job in expired] == ["a"]
        assert expired[0].status == JobStatus.PENDING
        assert expired[0].attempt_count == 1
        assert expired[0].last_error == "Lease expired"
        # the vanished worker can no longer finish it
        assert await store.mark_completed("a", "t1") is False

    @pytest.mark.asyncio
    async def test_expired_lease_on_last_attempt_fails(self, store, clock):
        job = make_job("a")
        job.attempt_count = 3
        await store.insert_many([job])
        await store.claim_next("batch-1", "t", 10)

        clock.advance(11)
        expired = await store.expire_stale_leases(3, 5)

        assert expired[0].status == JobStatus.FAILED
        assert expired[0].attempt_count == 3


class TestBatchOperations:
    @pytest.mark.asyncio
    async def test_counts_always_sum_to_total(self, store):
        await store.insert_many([make_job(f"j{i}", position=i) for i in range(4)])
        await store.claim_next("batch-1", "t0", 60)
        await store.claim_next("batch-1", "t1", 60)
        await store.mark_completed("j0", "t0")

        counts = await store.count_by_status("batch-1")

        assert counts == {"completed": 1, "processing": 1, "pending": 2}
        assert sum(counts.values()) == 4

    @pytest.mark.asyncio
    async def test_cancel_fails_only_pending_jobs(self, store):
        await store.insert_many([make_job("a"), make_job("b", position=1)])
        await store.claim_next("batch-1", "t", 60)

        cancelled = await store.cancel_pending("batch-1", "Batch cancelled")

        assert cancelled == 1
        assert (await store.get_job("a")).status == JobStatus.PROCESSING
        b = await store.get_job("b")
        assert b.status == JobStatus.FAILED
        assert b.last_error == "Batch cancelled"

    @pytest.mark.asyncio
    async def test_set_target_document_fills_missing_targets_only(self, store):
        loose = make_job("a")
        loose.target_document_id = None
        await store.insert_many([loose, make_job("b", position=1)])

        assert await store.set_target_document("batch-1", "doc-2") == 1
        assert (await store.get_job("a")).target_document_id == "doc-2"
        assert (await store.get_job("b")).target_document_id == "doc-1"

    @pytest.mark.asyncio
    async def test_set_target_document_leaves_finished_jobs(self, store):
        loose = make_job("a")
        loose.target_document_id = None
        await store.insert_many([loose])
        await store.cancel_pending("batch-1", "Batch cancelled")

        assert await store.set_target_document("batch-1", "doc-2") == 0
        assert (await store.get_job("a")).target_document_id is None
