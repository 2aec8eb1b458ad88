# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the MailScheduler facade."""

import asyncio

import pytest

from conftest import T0, DummyTransport
from mail_scheduler.config import QueueConfig, SchedulerConfig, WorkerConfig
from mail_scheduler.core import MailScheduler
from mail_scheduler.errors import NotFoundError, ValidationError


@pytest.fixture
async def service(db_path):
    svc = MailScheduler(SchedulerConfig(db_path=db_path, test_mode=True), transport=DummyTransport())
    await svc.start()
    yield svc
    await svc.stop()


@pytest.fixture
async def owner(service):
    return await service.sync_user({"email": "owner@example.com", "name": "Owner"})


@pytest.fixture
async def news(service, owner):
    return await service.create_sender({"userId": owner["id"], "email": "news@example.com", "name": "News"})


def _batch(sender_id, recipients, start=T0):
    return {
        "senderId": sender_id,
        "rows": [{"recipient": r} for r in recipients],
        "startTime": start,
        "delaySeconds": 2,
    }


class TestUsersAndSenders:
    async def test_user_lookup(self, service, owner):
        assert (await service.get_user_by_email("owner@example.com"))["id"] == owner["id"]
        with pytest.raises(NotFoundError, match="User not found"):
            await service.get_user_by_email("ghost@example.com")

    async def test_invalid_user_payload(self, service):
        with pytest.raises(ValidationError) as excinfo:
            await service.sync_user({"email": "not an address"})
        assert excinfo.value.details[0]["loc"] == ("email",)

    async def test_sender_for_unknown_user(self, service):
        with pytest.raises(NotFoundError, match="User not found"):
            await service.create_sender({"userId": "nobody", "email": "s@example.com"})

    async def test_sender_crud(self, service, owner, news):
        assert news["hourly_limit"] == 50
        assert [s["id"] for s in await service.list_senders(owner["id"])] == [news["id"]]

        updated = await service.update_sender(news["id"], {"hourlyLimit": 10, "delaySeconds": 5})
        assert (updated["hourly_limit"], updated["delay_seconds"], updated["name"]) == (10, 5, "News")

        detail = await service.get_sender(news["id"])
        assert detail["email_job_count"] == 0

        await service.delete_sender(news["id"])
        with pytest.raises(NotFoundError):
            await service.get_sender(news["id"])
        with pytest.raises(NotFoundError):
            await service.delete_sender(news["id"])
        with pytest.raises(NotFoundError):
            await service.update_sender(news["id"], {"name": "x"})

    async def test_update_rejects_out_of_range(self, service, news):
        with pytest.raises(ValidationError):
            await service.update_sender(news["id"], {"delaySeconds": 120})


class TestJobs:
    async def test_schedule_get_and_list(self, service, news):
        result = await service.schedule_batch(_batch(news["id"], ["a@example.com", "b@example.com"]))
        assert result.scheduled_count == 2

        job = await service.get_job(result.jobs[0]["id"])
        assert job["sender"]["email"] == "news@example.com"
        assert (await service.get_sender(news["id"]))["email_job_count"] == 2

        await service.cancel_job(result.jobs[1]["id"])
        failed = await service.list_jobs(news["id"], "failed")
        assert [j["id"] for j in failed] == [result.jobs[1]["id"]]
        assert len(await service.list_jobs(news["id"], "bogus")) == 2

    async def test_job_of_deleted_sender(self, service, news):
        result = await service.schedule_batch(_batch(news["id"], ["a@example.com"]))
        await service.delete_sender(news["id"])
        job = await service.get_job(result.jobs[0]["id"])
        assert job["sender"] is None

    async def test_unknown_job(self, service):
        with pytest.raises(NotFoundError, match="Email job not found"):
            await service.get_job("missing")

    async def test_stats(self, clock, service, news):
        result = await service.schedule_batch(_batch(news["id"], ["a@example.com", "b@example.com"]))
        await service.db.email_jobs.mark_sent(result.jobs[0]["id"], T0 + 10)

        stats = await service.stats(news["id"], now=T0 + 60)
        assert stats["status_counts"] == {"SENT": 1, "SCHEDULED": 1}
        assert stats["last_24_hours"] == {"SENT": 1, "SCHEDULED": 1}
        assert stats["queue_metrics"]["delayed"] + stats["queue_metrics"]["waiting"] == 2

        later = await service.stats(news["id"], now=T0 + 2 * 86400)
        assert later["last_24_hours"] == {}
        assert later["status_counts"] == {"SENT": 1, "SCHEDULED": 1}


class TestMaintenance:
    async def test_housekeeping(self, service, news):
        result = await service.schedule_batch(_batch(news["id"], ["a@example.com"]))
        await service.queue.remove_by_id(result.jobs[0]["id"])
        await service.limiter.increment_count(news["id"], T0 - 10_000)

        report = await service.housekeeping(now=T0)
        assert report["resynced"] == 1
        assert report["purged"] == 1
        assert report["queue"]["waiting"] == 1
        assert service.transport.cleanups == 1

    async def test_health_ok(self, service):
        report = await service.health()
        assert report["status"] == "ok"
        assert report["services"] == {"database": "connected", "email": "connected"}

    async def test_health_reports_smtp_error(self, service):
        service.transport.verified = False
        report = await service.health()
        assert report["status"] == "ok"
        assert report["services"]["email"] == "error"

    async def test_health_database_error(self, tmp_path):
        svc = MailScheduler(
            SchedulerConfig(db_path=str(tmp_path / "missing" / "dir" / "x.db")), transport=DummyTransport()
        )
        report = await svc.health()
        assert report["status"] == "error"
        assert "error" in report


class TestLifecycle:
    async def test_init_resyncs_orphans(self, db_path):
        first = MailScheduler(SchedulerConfig(db_path=db_path, test_mode=True), transport=DummyTransport())
        await first.start()
        user = await first.sync_user({"email": "o@example.com"})
        sender = await first.create_sender({"userId": user["id"], "email": "s@example.com"})
        result = await first.schedule_batch(_batch(sender["id"], ["a@example.com"]))
        await first.queue.remove_by_id(result.jobs[0]["id"])
        await first.stop()

        second = MailScheduler(SchedulerConfig(db_path=db_path, test_mode=True), transport=DummyTransport())
        await second.start()
        try:
            assert await second.queue.get(result.jobs[0]["id"]) is not None
        finally:
            await second.stop()

    async def test_start_runs_worker_and_housekeeping(self, db_path):
        transport = DummyTransport()
        config = SchedulerConfig(
            db_path=db_path,
            worker=WorkerConfig(concurrency=1, idle_poll=0.05),
            queue=QueueConfig(housekeeping_interval=3600),
        )
        svc = MailScheduler(config, transport=transport)
        await svc.start()
        assert svc.worker.running
        assert svc._task_housekeeping is not None
        for _ in range(100):
            if transport.cleanups:
                break
            await asyncio.sleep(0.02)
        await svc.stop()

        assert not svc.worker.running
        assert svc._task_housekeeping is None
        assert transport.cleanups >= 1
        assert transport.closed is True
