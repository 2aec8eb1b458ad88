# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: file-backed database, controllable clock, dummy transport."""

from __future__ import annotations

import asyncio
import time

import pytest

from mail_scheduler.delay_queue import DelayQueue
from mail_scheduler.rate_limit import RateLimiter
from mail_scheduler.scheduler import BatchScheduler
from mail_scheduler.scheduler_db import SchedulerDb
from mail_scheduler.worker import DispatchWorker

T0 = 1_700_000_000.0


class Clock:
    """Stand-in for ``time.time`` that only moves when told to."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class DummyTransport:
    """Transport recording sent e-mails; fails the first ``failures`` sends."""

    def __init__(self, failures: int = 0, exc: Exception | None = None, delay: float = 0.0):
        self.failures = failures
        self.exc = exc or OSError("connection refused")
        self.delay = delay
        self.sent = []
        self.verified = True
        self.cleanups = 0
        self.closed = False

    async def send(self, email):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise self.exc
        self.sent.append(email)
        return f"<{len(self.sent)}@test>"

    async def verify(self):
        return self.verified

    async def cleanup(self):
        self.cleanups += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def clock(monkeypatch):
    c = Clock()
    monkeypatch.setattr(time, "time", c)
    return c


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "scheduler.db")


@pytest.fixture
async def db(db_path):
    database = SchedulerDb(db_path)
    await database.init_db()
    yield database
    await database.close()


@pytest.fixture
async def user(db):
    return await db.users.sync("owner@example.com", name="Owner")


@pytest.fixture
async def sender(db, user):
    return await db.senders.add({
        "user_id": user["id"],
        "email": "news@example.com",
        "name": "Newsletter",
        "hourly_limit": 50,
        "delay_seconds": 2,
    })


@pytest.fixture
def queue(db):
    return DelayQueue(db)


@pytest.fixture
def limiter(db):
    return RateLimiter(db)


@pytest.fixture
def batch_scheduler(db, queue):
    return BatchScheduler(db, queue)


@pytest.fixture
def transport():
    return DummyTransport()


@pytest.fixture
def worker(db, queue, limiter, transport, clock, monkeypatch):
    """Worker whose spacing wait advances the fake clock instead of sleeping."""
    w = DispatchWorker(db, queue, limiter, transport, concurrency=1, idle_poll=0.05)

    async def fake_pause(seconds):
        if w._stop.is_set():
            return False
        clock.advance(seconds)
        return True

    monkeypatch.setattr(w, "_pause", fake_pause)
    return w
