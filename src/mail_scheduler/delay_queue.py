# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Durable delay queue with leases, keyed by e-mail job id.

Entries become eligible at ``ready_at``. A consumer claims one eligible entry
under a time-bounded lease and settles it with exactly one of:

- ``complete``: delivered or intentionally dropped; a re-enqueue that happened
  during the lease survives and only the lease is released.
- ``fail``: consumes one attempt and reschedules with exponential backoff
  until the attempt budget is spent, then the entry is ``failed``.
- ``discard``: terminal failure without redelivery.

An unsettled lease simply expires and the entry is redelivered (at-least-once).

Example:
    Producer and consumer::

        queue = DelayQueue(db)
        await queue.enqueue(job_id, ready_at=time.time() + 30, payload={...})

        lease = await queue.claim()
        if lease:
            try:
                await handle(lease.payload)
            except Exception as exc:
                await queue.fail(lease, str(exc))
            else:
                await queue.complete(lease)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .entities.dispatch_queue import FAILED, QUEUED
from .uid import get_uuid

if TYPE_CHECKING:
    from .scheduler_db import SchedulerDb

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Lease:
    """A consumer's claim on one queue entry.

    Attributes:
        job_id: Entry key (the e-mail job id).
        token: Secret proving ownership of the lease.
        payload: Snapshot stored at enqueue time.
        attempts_made: Failed attempts consumed before this delivery.
        max_attempts: Attempt budget of the entry.
        generation: Entry generation at claim time.
        ready_at: Time the entry became eligible.
        expires_at: When the lease lapses if not settled.
    """

    job_id: str
    token: str
    payload: dict[str, Any]
    attempts_made: int
    max_attempts: int
    generation: int
    ready_at: float
    expires_at: float


class DelayQueue:
    """Delay queue stored in the ``dispatch_queue`` table.

    Attributes:
        db: SchedulerDb providing the dispatch queue table.
        lease_seconds: Lease duration for claimed entries.
        backoff_base: First retry delay; doubles with every failed attempt.
    """

    def __init__(
        self,
        db: SchedulerDb,
        *,
        lease_seconds: float = 120.0,
        backoff_base: float = 5.0,
        keep_completed_seconds: float = 24 * 3600,
        keep_completed_count: int = 1000,
        keep_failed_seconds: float = 7 * 24 * 3600,
    ):
        self.db = db
        self.lease_seconds = lease_seconds
        self.backoff_base = backoff_base
        self.keep_completed_seconds = keep_completed_seconds
        self.keep_completed_count = keep_completed_count
        self.keep_failed_seconds = keep_failed_seconds
        self._wake_event = asyncio.Event()

    @property
    def table(self):
        return self.db.dispatch_queue

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def enqueue(
        self,
        job_id: str,
        ready_at: float,
        payload: dict[str, Any],
        max_attempts: int | None = None,
        now: float | None = None,
    ) -> None:
        """Insert the entry for ``job_id`` or replace the existing one."""
        now = time.time() if now is None else now
        await self.table.put(
            job_id,
            ready_at,
            payload,
            max_attempts if max_attempts is not None else DEFAULT_MAX_ATTEMPTS,
            now,
        )
        self.wake()

    async def remove_by_id(self, job_id: str) -> bool:
        """Delete the entry; returns False when there was none."""
        return await self.table.remove(job_id)

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def claim(self, now: float | None = None) -> Lease | None:
        """Lease the earliest eligible entry, or return None if nothing is due."""
        now = time.time() if now is None else now
        candidates = await self.table.claim_candidates(now)
        for candidate in candidates:
            token = get_uuid()
            lease_until = now + self.lease_seconds
            if not await self.table.try_lease(candidate["job_id"], token, now, lease_until):
                continue  # taken by another consumer
            row = await self.table.get_leased(candidate["job_id"], token)
            if row is None:
                continue
            return Lease(
                job_id=row["job_id"],
                token=token,
                payload=row["payload"] or {},
                attempts_made=int(row["attempts_made"]),
                max_attempts=int(row["max_attempts"]),
                generation=int(row["leased_generation"]),
                ready_at=float(row["ready_at"]),
                expires_at=lease_until,
            )
        return None

    async def complete(self, lease: Lease, now: float | None = None) -> bool:
        """Settle a lease successfully. False when the lease was already lost."""
        now = time.time() if now is None else now
        done = await self.table.complete(lease.job_id, lease.token, now)
        if not done:
            logger.debug("Stale lease on %s, completion ignored", lease.job_id)
        self.wake()
        return done

    async def fail(self, lease: Lease, reason: str, now: float | None = None) -> str | None:
        """Consume one attempt and reschedule with backoff.

        Returns:
            ``"queued"`` when the entry will be redelivered, ``"failed"`` when
            the attempt budget is spent, None when the lease was already lost.
        """
        now = time.time() if now is None else now
        attempts = lease.attempts_made + 1
        terminal = attempts >= lease.max_attempts
        delay = self.backoff_base * (2 ** (attempts - 1))
        ready_at = now if terminal else now + delay
        settled = await self.table.settle_failure(
            lease.job_id, lease.token, lease.generation, attempts, terminal, ready_at, reason, now
        )
        if not settled:
            # Re-enqueued during the lease: the new entry wins
            released = await self.table.release(lease.job_id, lease.token, now)
            self.wake()
            return QUEUED if released else None
        if terminal:
            logger.info("Queue entry %s failed after %d attempts: %s", lease.job_id, attempts, reason)
            return FAILED
        logger.debug("Queue entry %s retry %d in %.1fs", lease.job_id, attempts, delay)
        self.wake()
        return QUEUED

    async def discard(self, lease: Lease, reason: str, now: float | None = None) -> bool:
        """Fail the entry for good, without using the remaining attempts."""
        now = time.time() if now is None else now
        settled = await self.table.settle_failure(
            lease.job_id, lease.token, lease.generation,
            lease.attempts_made, True, lease.ready_at, reason, now,
        )
        if not settled:
            await self.table.release(lease.job_id, lease.token, now)
        return settled

    # -------------------------------------------------------------------------
    # Inspection and maintenance
    # -------------------------------------------------------------------------

    async def get(self, job_id: str) -> dict[str, Any] | None:
        return await self.table.get(job_id)

    async def counts(self, now: float | None = None) -> dict[str, int]:
        """Return ``{waiting, active, completed, failed, delayed}``."""
        return await self.table.state_counts(time.time() if now is None else now)

    async def next_ready_at(self, now: float | None = None) -> float | None:
        return await self.table.next_due(time.time() if now is None else now)

    async def prune(self, now: float | None = None) -> int:
        """Apply retention to completed and failed entries."""
        now = time.time() if now is None else now
        removed = await self.table.prune_finished(
            now,
            self.keep_completed_seconds,
            self.keep_completed_count,
            self.keep_failed_seconds,
        )
        if removed:
            logger.debug("Pruned %d finished queue entries", removed)
        return removed

    # -------------------------------------------------------------------------
    # Wake-up
    # -------------------------------------------------------------------------

    def wake(self) -> None:
        """Wake consumers sleeping in ``wait_for_work``."""
        self._wake_event.set()

    async def wait_for_work(self, timeout: float) -> bool:
        """Sleep until woken or until the next entry is due, capped by ``timeout``.

        Returns:
            True if woken by an enqueue or settlement, False on timeout.
        """
        if timeout <= 0:
            return False
        due = await self.next_ready_at()
        if due is not None:
            timeout = max(0.0, min(timeout, due - time.time()))
            if timeout == 0:
                return False
        try:
            async with asyncio.timeout(timeout):
                await self._wake_event.wait()
            self._wake_event.clear()
            return True
        except TimeoutError:
            return False


__all__ = ["DEFAULT_MAX_ATTEMPTS", "DelayQueue", "Lease"]
