# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the lease-based delay queue."""

import asyncio

from conftest import T0
from mail_scheduler.delay_queue import DelayQueue


class TestClaim:
    async def test_entry_is_not_claimable_before_ready_at(self, queue):
        await queue.enqueue("job-1", ready_at=T0 + 30, payload={"email_job_id": "job-1"}, now=T0)
        assert await queue.claim(now=T0 + 29) is None

        lease = await queue.claim(now=T0 + 30)
        assert lease is not None
        assert lease.job_id == "job-1"
        assert lease.payload == {"email_job_id": "job-1"}
        assert lease.attempts_made == 0
        assert lease.expires_at == T0 + 30 + 120

    async def test_earliest_entry_first(self, queue):
        await queue.enqueue("late", ready_at=T0 + 20, payload={}, now=T0)
        await queue.enqueue("early", ready_at=T0 + 10, payload={}, now=T0)
        first = await queue.claim(now=T0 + 60)
        second = await queue.claim(now=T0 + 60)
        assert (first.job_id, second.job_id) == ("early", "late")

    async def test_leased_entry_is_not_handed_out_twice(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, now=T0)
        assert await queue.claim(now=T0) is not None
        assert await queue.claim(now=T0 + 1) is None

    async def test_expired_lease_is_redelivered(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, now=T0)
        first = await queue.claim(now=T0)
        second = await queue.claim(now=T0 + 121)
        assert second is not None
        assert second.token != first.token
        # The first holder lost the lease
        assert await queue.complete(first, now=T0 + 122) is False
        assert await queue.complete(second, now=T0 + 122) is True


class TestSettle:
    async def test_complete(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, now=T0)
        lease = await queue.claim(now=T0)
        assert await queue.complete(lease, now=T0 + 1) is True
        entry = await queue.get("job-1")
        assert entry["state"] == "completed"
        assert entry["lease_token"] is None
        assert entry["finished_at"] == T0 + 1

    async def test_reenqueue_during_lease_survives_complete(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={"v": 1}, now=T0)
        lease = await queue.claim(now=T0)
        await queue.enqueue("job-1", ready_at=T0 + 300, payload={"v": 2}, now=T0 + 1)
        await queue.complete(lease, now=T0 + 2)

        entry = await queue.get("job-1")
        assert entry["state"] == "queued"
        assert entry["ready_at"] == T0 + 300
        assert entry["lease_token"] is None
        again = await queue.claim(now=T0 + 300)
        assert again.payload == {"v": 2}

    async def test_fail_backs_off_exponentially_then_fails(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, max_attempts=3, now=T0)

        lease = await queue.claim(now=T0)
        assert await queue.fail(lease, "boom", now=T0) == "queued"
        assert (await queue.get("job-1"))["ready_at"] == T0 + 5
        assert await queue.claim(now=T0 + 4) is None

        lease = await queue.claim(now=T0 + 5)
        assert lease.attempts_made == 1
        assert await queue.fail(lease, "boom", now=T0 + 5) == "queued"
        assert (await queue.get("job-1"))["ready_at"] == T0 + 15

        lease = await queue.claim(now=T0 + 15)
        assert await queue.fail(lease, "boom again", now=T0 + 15) == "failed"
        entry = await queue.get("job-1")
        assert entry["state"] == "failed"
        assert entry["attempts_made"] == 3
        assert entry["failed_reason"] == "boom again"
        assert await queue.claim(now=T0 + 10_000) is None

    async def test_fail_after_reenqueue_keeps_new_entry(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, now=T0)
        lease = await queue.claim(now=T0)
        await queue.enqueue("job-1", ready_at=T0 + 60, payload={}, now=T0 + 1)
        assert await queue.fail(lease, "boom", now=T0 + 2) == "queued"
        entry = await queue.get("job-1")
        assert entry["ready_at"] == T0 + 60
        assert entry["attempts_made"] == 0

    async def test_discard_fails_without_redelivery(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, max_attempts=5, now=T0)
        lease = await queue.claim(now=T0)
        assert await queue.discard(lease, "gone", now=T0 + 1) is True
        entry = await queue.get("job-1")
        assert entry["state"] == "failed"
        assert entry["failed_reason"] == "gone"
        assert await queue.claim(now=T0 + 10_000) is None

    async def test_reenqueue_revives_finished_entry(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, max_attempts=1, now=T0)
        lease = await queue.claim(now=T0)
        assert await queue.fail(lease, "boom", now=T0) == "failed"

        await queue.enqueue("job-1", ready_at=T0 + 10, payload={}, max_attempts=1, now=T0 + 1)
        entry = await queue.get("job-1")
        assert entry["state"] == "queued"
        assert entry["attempts_made"] == 0
        assert entry["failed_reason"] is None


class TestMaintenance:
    async def test_remove_by_id(self, queue):
        await queue.enqueue("job-1", ready_at=T0, payload={}, now=T0)
        assert await queue.remove_by_id("job-1") is True
        assert await queue.remove_by_id("job-1") is False
        assert await queue.get("job-1") is None

    async def test_counts(self, queue):
        await queue.enqueue("due", ready_at=T0, payload={}, now=T0)
        await queue.enqueue("later", ready_at=T0 + 100, payload={}, now=T0)
        await queue.enqueue("busy", ready_at=T0 - 1, payload={}, now=T0)
        await queue.enqueue("done", ready_at=T0 - 2, payload={}, now=T0)

        done = await queue.claim(now=T0)
        assert done.job_id == "done"
        await queue.complete(done, now=T0)
        busy = await queue.claim(now=T0)
        assert busy.job_id == "busy"

        counts = await queue.counts(now=T0)
        assert counts == {"waiting": 1, "active": 1, "completed": 1, "failed": 0, "delayed": 1}

    async def test_next_ready_at(self, queue):
        assert await queue.next_ready_at(now=T0) is None
        await queue.enqueue("a", ready_at=T0 + 50, payload={}, now=T0)
        await queue.enqueue("b", ready_at=T0 + 20, payload={}, now=T0)
        assert await queue.next_ready_at(now=T0) == T0 + 20

    async def test_prune_applies_retention(self, db):
        queue = DelayQueue(db, keep_completed_count=2)
        for n in range(4):
            job_id = f"job-{n}"
            await queue.enqueue(job_id, ready_at=T0, payload={}, now=T0)
            lease = await queue.claim(now=T0)
            await queue.complete(lease, now=T0 + n)
        await queue.enqueue("bad", ready_at=T0, payload={}, max_attempts=1, now=T0)
        lease = await queue.claim(now=T0)
        await queue.fail(lease, "boom", now=T0)

        assert await queue.prune(now=T0 + 10) == 2
        assert await queue.get("job-0") is None
        assert await queue.get("job-3") is not None
        assert await queue.get("bad") is not None

        await queue.prune(now=T0 + 7 * 24 * 3600 + 1)
        assert (await queue.counts(now=T0)) == {
            "waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0,
        }


class TestWakeUp:
    async def test_wait_for_work_returns_on_enqueue(self, queue):
        async def producer():
            await asyncio.sleep(0.05)
            queue.wake()

        task = asyncio.create_task(producer())
        assert await queue.wait_for_work(5.0) is True
        await task

    async def test_wait_for_work_times_out(self, queue):
        assert await queue.wait_for_work(0.05) is False
