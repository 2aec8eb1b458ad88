# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Service facade wiring the job store, queue, limiter, scheduler and worker.

``MailScheduler`` is what the HTTP API, the CLI and embedding applications
talk to. It owns the background tasks (dispatch consumers and a
housekeeping loop) and translates entity validation into
:mod:`mail_scheduler.errors` exceptions.

Example:
    Embedding the service::

        service = MailScheduler(load_config())
        await service.start()
        result = await service.schedule_batch({
            "senderId": sender_id,
            "csvData": "email\\nalice@example.com\\n",
            "startTime": "2025-01-01T09:00:00Z",
        })
        await service.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

import pydantic

from .config import SchedulerConfig
from .delay_queue import DelayQueue
from .entities.email_job import JobStatus, ScheduleRequest
from .entities.sender import SenderCreate, SenderUpdate
from .entities.user import UserSync
from .errors import NotFoundError, ValidationError
from .mailer import MailTransport, SmtpTransport
from .prometheus import MailMetrics
from .rate_limit import RateLimiter
from .scheduler import BatchScheduler, ScheduleResult
from .scheduler_db import SchedulerDb
from .worker import DispatchWorker

DAY_SECONDS = 24 * 3600


def _validate(model: type[pydantic.BaseModel], data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        details = exc.errors(include_url=False, include_context=False)
        raise ValidationError("Invalid request data", details=details) from exc


class MailScheduler:
    """Mail scheduling service.

    Attributes:
        config: Service configuration.
        db: Job store (users, senders, jobs, rate window, queue).
        queue: Delay queue.
        limiter: Per-sender hourly limiter.
        scheduler: Batch producer.
        worker: Dispatch consumers.
        metrics: Prometheus metrics.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        transport: MailTransport | None = None,
        metrics: MailMetrics | None = None,
        logger: Any = None,
    ):
        self.config = config or SchedulerConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or MailMetrics()
        cfg = self.config

        self.db = SchedulerDb(cfg.db_path)
        self.queue = DelayQueue(
            self.db,
            lease_seconds=cfg.queue.lease_seconds,
            backoff_base=cfg.queue.backoff_base,
            keep_completed_seconds=cfg.queue.keep_completed_seconds,
            keep_completed_count=cfg.queue.keep_completed_count,
            keep_failed_seconds=cfg.queue.keep_failed_seconds,
        )
        self.limiter = RateLimiter(
            self.db,
            window=cfg.rate_limit.window_seconds,
            expiry=cfg.rate_limit.expiry_seconds,
        )
        self.transport: MailTransport = transport or SmtpTransport(cfg.smtp)
        self.scheduler = BatchScheduler(self.db, self.queue)
        self.worker = DispatchWorker(
            self.db,
            self.queue,
            self.limiter,
            self.transport,
            concurrency=cfg.worker.concurrency,
            max_jobs=cfg.worker.max_jobs,
            duration=cfg.worker.duration,
            send_timeout=cfg.worker.send_timeout,
            idle_poll=cfg.worker.idle_poll,
            min_defer_seconds=cfg.worker.min_defer_seconds,
            metrics=self.metrics,
            logger=self.logger,
        )
        self._stop = asyncio.Event()
        self._task_housekeeping: asyncio.Task | None = None
        self._initialized = False

    # ----------------------------------------------------------------- lifecycle
    async def init(self) -> None:
        """Create the schema and re-enqueue jobs left without a queue entry."""
        if self._initialized:
            return
        await self.db.init_db()
        await self.scheduler.resync_queue()
        self._initialized = True

    async def start(self, run_worker: bool | None = None) -> None:
        """Initialize and start the background tasks.

        Args:
            run_worker: Start the dispatch consumers; defaults to ``config.run_worker``.
                In test mode no background task is started.
        """
        await self.init()
        if self.config.test_mode:
            self.logger.info("Test mode: background loops disabled")
            return
        if run_worker is None:
            run_worker = self.config.run_worker
        if run_worker:
            await self.worker.start()
        self._stop.clear()
        self._task_housekeeping = asyncio.create_task(self._housekeeping_loop(), name="housekeeping-loop")

    async def stop(self) -> None:
        """Stop background tasks, close the transport and the database."""
        self._stop.set()
        if self._task_housekeeping:
            await asyncio.gather(self._task_housekeeping, return_exceptions=True)
            self._task_housekeeping = None
        await self.worker.stop()
        await self.db.close()
        self._initialized = False

    async def _housekeeping_loop(self) -> None:
        interval = self.config.queue.housekeeping_interval
        while not self._stop.is_set():
            try:
                await self.housekeeping()
            except Exception as exc:
                self.logger.exception("Housekeeping failed: %s", exc)
            try:
                async with asyncio.timeout(interval):
                    await self._stop.wait()
            except TimeoutError:
                pass

    async def housekeeping(self, now: float | None = None) -> dict[str, Any]:
        """Prune the queue, purge expired window entries and resync orphans."""
        now = time.time() if now is None else now
        pruned = await self.queue.prune(now)
        purged = await self.limiter.purge_expired(now)
        resynced = await self.scheduler.resync_queue(now)
        counts = await self.queue.counts(now)
        self.metrics.set_queue_depth(counts)
        await self.transport.cleanup()
        return {"pruned": pruned, "purged": purged, "resynced": resynced, "queue": counts}

    # ----------------------------------------------------------------- jobs
    async def schedule_batch(self, request: ScheduleRequest | dict[str, Any]) -> ScheduleResult:
        return await self.scheduler.schedule_batch(request)

    async def cancel_job(self, job_id: str) -> dict[str, Any]:
        return await self.scheduler.cancel_job(job_id)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        """Return the job with its sender under ``sender`` (None if deleted)."""
        job = await self.db.email_jobs.get(job_id)
        if job is None:
            raise NotFoundError("Email job not found")
        job["sender"] = await self.db.senders.get(job["sender_id"])
        return job

    async def list_jobs(
        self, sender_id: str, status: str | None = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        """List a sender's jobs by scheduled time. Unknown statuses are ignored."""
        status_filter: JobStatus | None = None
        if status:
            try:
                status_filter = JobStatus(status.upper())
            except ValueError:
                self.logger.debug("Ignoring unknown status filter %r", status)
        return await self.db.email_jobs.list_for_sender(sender_id, status_filter, limit=min(limit, 100))

    async def stats(self, sender_id: str, now: float | None = None) -> dict[str, Any]:
        """Job counts by status (all time and last 24 hours) plus queue counts."""
        now = time.time() if now is None else now
        return {
            "status_counts": await self.db.email_jobs.count_by_status(sender_id),
            "queue_metrics": await self.queue.counts(now),
            "last_24_hours": await self.db.email_jobs.count_by_status(sender_id, since=now - DAY_SECONDS),
        }

    # ----------------------------------------------------------------- users
    async def sync_user(self, data: UserSync | dict[str, Any]) -> dict[str, Any]:
        payload = _validate(UserSync, data)
        return await self.db.users.sync(payload.email, name=payload.name, image=payload.image)

    async def get_user_by_email(self, email: str) -> dict[str, Any]:
        user = await self.db.users.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # ----------------------------------------------------------------- senders
    async def create_sender(self, data: SenderCreate | dict[str, Any]) -> dict[str, Any]:
        payload = _validate(SenderCreate, data)
        if await self.db.users.get(payload.user_id) is None:
            raise NotFoundError("User not found")
        return await self.db.senders.add(payload.model_dump())

    async def get_sender(self, sender_id: str) -> dict[str, Any]:
        """Return the sender with ``email_job_count``."""
        sender = await self.db.senders.get(sender_id)
        if sender is None:
            raise NotFoundError("Sender not found")
        sender["email_job_count"] = await self.db.email_jobs.count_for_sender(sender_id)
        return sender

    async def list_senders(self, user_id: str) -> list[dict[str, Any]]:
        return await self.db.senders.list_for_user(user_id)

    async def update_sender(self, sender_id: str, data: SenderUpdate | dict[str, Any]) -> dict[str, Any]:
        payload = _validate(SenderUpdate, data)
        sender = await self.db.senders.update_fields(sender_id, payload.model_dump(exclude_unset=True))
        if sender is None:
            raise NotFoundError("Sender not found")
        return sender

    async def delete_sender(self, sender_id: str) -> None:
        """Delete a sender; its jobs stay in the store."""
        if not await self.db.senders.remove(sender_id):
            raise NotFoundError("Sender not found")

    # ----------------------------------------------------------------- health
    async def health(self) -> dict[str, Any]:
        """Report database and transport state.

        ``status`` is "error" only when the database is unreachable; an
        unreachable SMTP server is reported under ``services.email``.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await self.db.ping()
        except Exception as exc:
            self.logger.error("Health check: database error: %s", exc)
            return {"status": "error", "timestamp": timestamp, "error": str(exc)}
        email_ok = await self.transport.verify()
        return {
            "status": "ok",
            "timestamp": timestamp,
            "services": {
                "database": "connected",
                "email": "connected" if email_ok else "error",
            },
        }


__all__ = ["MailScheduler"]
