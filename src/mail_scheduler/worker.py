# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dispatch worker: consumes the delay queue and sends the e-mails.

A pool of consumer tasks shares one DelayQueue. Every claimed entry goes
through the same state machine:

1. The job is loaded; a missing or already terminal job is acknowledged and
   skipped, a job whose retries are already exhausted is failed.
2. The sender is loaded; missing or inactive senders are transient failures.
3. The hourly window is checked. A full window defers the job to the next
   free slot (at least ``min_defer_seconds`` away) without using a retry.
4. The consumer waits the sender's ``delay_seconds`` and sends.
5. Success marks the job SENT and records the send in the window. Failure
   increments the retry counter (FAILED once exhausted) and the queue entry
   goes into exponential backoff or is discarded.

Shutdown stops new claims; a consumer still waiting in step 4 abandons its
lease, which expires and is redelivered later.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Any

from .entities.email_job import JobStatus
from .errors import InactiveSenderError, TransientDispatchError
from .mailer import OutboundEmail
from .prometheus import MailMetrics
from .scheduler import job_payload

if TYPE_CHECKING:
    from .delay_queue import DelayQueue, Lease
    from .mailer import MailTransport
    from .rate_limit import RateLimiter
    from .scheduler_db import SchedulerDb


class DispatchOutcome(str, Enum):
    """Result of processing one lease."""

    SENT = "sent"
    DEFERRED = "deferred"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


class DequeueThrottle:
    """Sliding-window cap on dequeues shared by all consumers.

    At most ``max_jobs`` acquisitions succeed in any ``duration`` seconds;
    further callers wait in arrival order.
    """

    def __init__(self, max_jobs: int = 10, duration: float = 1.0):
        self.max_jobs = max(1, int(max_jobs))
        self.duration = duration
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._stamps and self._stamps[0] <= now - self.duration:
                    self._stamps.popleft()
                if len(self._stamps) < self.max_jobs:
                    self._stamps.append(now)
                    return
                await asyncio.sleep(self._stamps[0] + self.duration - now)


class DispatchWorker:
    """Pool of consumers delivering queued e-mail jobs.

    Attributes:
        db: Job store.
        queue: Delay queue to consume.
        limiter: Per-sender hourly window.
        transport: Mail transport used for delivery.
        concurrency: Number of consumer tasks.
        send_timeout: Seconds allowed for one transport send.
        min_defer_seconds: Minimum distance of a rate-limit reschedule.
    """

    def __init__(
        self,
        db: SchedulerDb,
        queue: DelayQueue,
        limiter: RateLimiter,
        transport: MailTransport,
        *,
        concurrency: int = 5,
        max_jobs: int = 10,
        duration: float = 1.0,
        send_timeout: float = 30.0,
        idle_poll: float = 5.0,
        min_defer_seconds: float = 60.0,
        metrics: MailMetrics | None = None,
        logger: Any = None,
    ):
        self.db = db
        self.queue = queue
        self.limiter = limiter
        self.transport = transport
        self.concurrency = max(1, int(concurrency))
        self.send_timeout = send_timeout
        self.idle_poll = idle_poll
        self.min_defer_seconds = min_defer_seconds
        self.metrics = metrics or MailMetrics()
        self.logger = logger or logging.getLogger(__name__)
        self.throttle = DequeueThrottle(max_jobs, duration)
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    # ----------------------------------------------------------------- lifecycle
    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Spawn the consumer tasks."""
        if self.running:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._consumer_loop(n), name=f"dispatch-consumer-{n}")
            for n in range(self.concurrency)
        ]
        self.logger.info(
            "Dispatch worker started: concurrency=%d, limiter=%d per %.1fs",
            self.concurrency, self.throttle.max_jobs, self.throttle.duration,
        )

    async def stop(self) -> None:
        """Stop claiming, let in-flight sends finish, then close the transport."""
        self._stop.set()
        self.queue.wake()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.transport.close()
        self.logger.info("Dispatch worker stopped")

    async def _consumer_loop(self, n: int) -> None:
        self.logger.debug("Dispatch consumer %d started", n)
        while not self._stop.is_set():
            try:
                outcome = await self.run_once()
                if outcome is None:
                    await self.queue.wait_for_work(self.idle_poll)
            except Exception as exc:
                self.logger.exception("Unhandled error in dispatch consumer %d: %s", n, exc)
                await self._pause(1.0)

    async def _pause(self, seconds: float) -> bool:
        """Sleep ``seconds`` unless stopped first.

        Returns:
            True if the full time elapsed, False if shutdown interrupted it.
        """
        if self._stop.is_set():
            return False
        if seconds <= 0:
            return True
        try:
            async with asyncio.timeout(seconds):
                await self._stop.wait()
        except TimeoutError:
            return True
        return False

    # ------------------------------------------------------------- processing
    async def run_once(self) -> DispatchOutcome | None:
        """Claim and process one due entry. Returns None when nothing is due."""
        await self.throttle.acquire()
        if self._stop.is_set():
            return None
        lease = await self.queue.claim()
        if lease is None:
            return None
        return await self.process(lease)

    async def process(self, lease: Lease) -> DispatchOutcome:
        """Run one delivery attempt for a claimed entry."""
        job_id = lease.payload.get("email_job_id") or lease.job_id
        job = await self.db.email_jobs.get(job_id)
        if job is None or job["status"] != JobStatus.SCHEDULED.value:
            self.logger.debug("Job %s missing or finished, dropping queue entry", job_id)
            await self.queue.complete(lease)
            return DispatchOutcome.SKIPPED

        sender_id = job["sender_id"]
        if int(job["retry_count"]) >= int(job["max_retries"]):
            await self.db.email_jobs.mark_failed(job_id)
            await self.queue.discard(lease, job.get("error") or "retries exhausted")
            self.metrics.inc_error(sender_id)
            return DispatchOutcome.FAILED

        self.logger.debug("Processing job %s for %s", job_id, job["recipient"])
        try:
            sender = await self.db.senders.get(sender_id)
            if sender is None:
                raise TransientDispatchError(f"Sender {sender_id} not found")
            if not sender["is_active"]:
                raise InactiveSenderError(f"Sender {sender_id} is inactive")

            check = await self.limiter.check_limit(sender_id, int(sender["hourly_limit"]))
        except Exception as exc:
            return await self._handle_failure(lease, job, exc)

        if not check.allowed:
            return await self._defer(lease, job)

        if not await self._pause(float(sender["delay_seconds"])):
            self.logger.info("Shutdown during spacing wait, abandoning job %s", job_id)
            return DispatchOutcome.ABANDONED

        try:
            email = OutboundEmail(
                from_name=sender.get("name"),
                from_email=sender["email"],
                to=job["recipient"],
                subject=job["subject"],
                text=job["body"] or "",
            )
            try:
                async with asyncio.timeout(self.send_timeout):
                    message_id = await self.transport.send(email)
            except TimeoutError as exc:
                raise TransientDispatchError(f"Send timed out after {self.send_timeout:g}s") from exc
        except Exception as exc:
            return await self._handle_failure(lease, job, exc)

        return await self._handle_success(lease, job, message_id)

    async def _handle_success(self, lease: Lease, job: dict[str, Any], message_id: str) -> DispatchOutcome:
        job_id = job["id"]
        if not await self.db.email_jobs.mark_sent(job_id):
            self.logger.warning("Job %s was finished elsewhere while it was being sent", job_id)
        await self.limiter.increment_count(job["sender_id"])
        await self.queue.complete(lease)
        self.metrics.inc_sent(job["sender_id"])
        self.logger.info("Email sent to %s (job %s, message id %s)", job["recipient"], job_id, message_id)
        return DispatchOutcome.SENT

    async def _defer(self, lease: Lease, job: dict[str, Any]) -> DispatchOutcome:
        """Reschedule a rate-limited job without consuming a retry."""
        now = time.time()
        next_slot = await self.limiter.get_next_available_time(job["sender_id"], now=now)
        retry_at = max(next_slot, now + self.min_defer_seconds)
        await self.queue.enqueue(
            job["id"],
            ready_at=retry_at,
            payload=job_payload(job),
            max_attempts=int(job["max_retries"]),
            now=now,
        )
        await self.db.email_jobs.reschedule(job["id"], retry_at, now=now)
        await self.queue.complete(lease, now=now)
        self.metrics.inc_deferred(job["sender_id"])
        self.logger.info(
            "Rate limit hit for sender %s, job %s rescheduled in %.0fs",
            job["sender_id"], job["id"], retry_at - now,
        )
        return DispatchOutcome.DEFERRED

    async def _handle_failure(self, lease: Lease, job: dict[str, Any], exc: Exception) -> DispatchOutcome:
        error = str(exc) or type(exc).__name__
        job_id = job["id"]
        updated = await self.db.email_jobs.record_failure(job_id, error)
        if updated is None:
            await self.queue.complete(lease)
            return DispatchOutcome.SKIPPED

        if updated["status"] == JobStatus.FAILED.value:
            await self.queue.discard(lease, error)
            self.metrics.inc_error(job["sender_id"])
            self.logger.error(
                "Job %s failed after %d retries: %s", job_id, updated["max_retries"], error
            )
            return DispatchOutcome.FAILED

        await self.queue.fail(lease, error)
        self.metrics.inc_retry(job["sender_id"])
        self.logger.warning(
            "Error sending job %s (attempt %d/%d): %s",
            job_id, updated["retry_count"], updated["max_retries"], error,
        )
        return DispatchOutcome.RETRY


__all__ = ["DequeueThrottle", "DispatchOutcome", "DispatchWorker"]
