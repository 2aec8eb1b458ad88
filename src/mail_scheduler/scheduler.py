# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Batch scheduler: turns a recipient list into spaced, queued e-mail jobs.

A batch is validated completely before anything is written. Jobs are then
inserted in one transaction and enqueued one by one with the job id as the
queue key; if the process dies between the two steps, ``resync_queue``
enqueues the SCHEDULED jobs that have no queue entry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pydantic

from .csv_rows import parse_recipients_csv
from .entities.email_job import DEFAULT_MAX_RETRIES, DEFAULT_SUBJECT, JobStatus, ScheduleRequest
from .entities.user.schema import email_address
from .errors import ConflictError, EmptyBatchError, NotFoundError, ValidationError
from .uid import get_uuid

if TYPE_CHECKING:
    from .delay_queue import DelayQueue
    from .scheduler_db import SchedulerDb

logger = logging.getLogger(__name__)


def job_payload(job: dict[str, Any]) -> dict[str, Any]:
    """Queue payload snapshot for a stored job."""
    return {
        "email_job_id": job["id"],
        "sender_id": job["sender_id"],
        "recipient": job["recipient"],
        "subject": job["subject"],
        "body": job["body"],
    }


@dataclass
class ScheduleResult:
    """Outcome of ``schedule_batch``.

    Attributes:
        scheduled_count: Number of jobs created.
        jobs: The created jobs, in scheduling order.
    """

    scheduled_count: int
    jobs: list[dict[str, Any]] = field(default_factory=list)


class BatchScheduler:
    """Producer side: creates jobs and feeds the delay queue.

    Attributes:
        db: Job store.
        queue: Delay queue receiving one entry per job.
        max_retries: Retry budget given to new jobs.
    """

    def __init__(self, db: SchedulerDb, queue: DelayQueue, max_retries: int = DEFAULT_MAX_RETRIES):
        self.db = db
        self.queue = queue
        self.max_retries = max_retries

    @staticmethod
    def parse_request(request: ScheduleRequest | dict[str, Any]) -> ScheduleRequest:
        """Validate a raw request.

        Raises:
            ValidationError: With the pydantic error list as ``details``.
        """
        if isinstance(request, ScheduleRequest):
            return request
        try:
            return ScheduleRequest.model_validate(request)
        except pydantic.ValidationError as exc:
            details = exc.errors(include_url=False, include_context=False)
            raise ValidationError("Invalid request data", details=details) from exc

    async def schedule_batch(
        self, request: ScheduleRequest | dict[str, Any], now: float | None = None
    ) -> ScheduleResult:
        """Create one SCHEDULED job per row with a recipient and enqueue them.

        Row ``i`` of the retained rows is scheduled at
        ``start_time + i * delay_seconds``. Subjects fall back to the default
        subject and then to "No Subject"; bodies to the default body and then
        to an empty string. The sender's hourly limit and spacing are updated
        when they differ from the request.

        Raises:
            ValidationError: Malformed request, CSV or recipient address.
            EmptyBatchError: No row carries a recipient.
            NotFoundError: Unknown sender.
        """
        req = self.parse_request(request)
        now = time.time() if now is None else now

        sender = await self.db.senders.get(req.sender_id)
        if sender is None:
            raise NotFoundError("Sender not found")

        rows = req.rows if req.rows is not None else parse_recipients_csv(req.csv_data or "")
        retained = []
        for position, row in enumerate(rows):
            recipient = (row.recipient or "").strip()
            if not recipient:
                continue
            try:
                email_address.validate_python(recipient)
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"Row {position + 1}: invalid e-mail address {recipient!r}",
                    details=exc.errors(include_url=False, include_context=False),
                ) from exc
            retained.append((recipient, row))
        if not retained:
            raise EmptyBatchError("No valid records found")

        if sender["hourly_limit"] != req.hourly_limit or sender["delay_seconds"] != req.delay_seconds:
            await self.db.senders.set_limits(sender["id"], req.hourly_limit, req.delay_seconds, now=now)

        start = req.start_ts
        jobs = []
        for i, (recipient, row) in enumerate(retained):
            jobs.append({
                "id": get_uuid(),
                "sender_id": sender["id"],
                "recipient": recipient,
                "subject": row.subject or req.default_subject or DEFAULT_SUBJECT,
                "body": row.body or req.default_body or "",
                "scheduled_at": start + i * req.delay_seconds,
                "sent_at": None,
                "status": JobStatus.SCHEDULED.value,
                "error": None,
                "retry_count": 0,
                "max_retries": self.max_retries,
                "created_at": now,
                "updated_at": now,
            })

        await self.db.email_jobs.insert_batch(jobs)
        for job in jobs:
            await self.queue.enqueue(
                job["id"],
                ready_at=job["scheduled_at"],
                payload=job_payload(job),
                max_attempts=job["max_retries"],
                now=now,
            )

        logger.info(
            "Scheduled %d emails for sender %s starting at %.0f", len(jobs), sender["id"], start
        )
        return ScheduleResult(scheduled_count=len(jobs), jobs=jobs)

    async def resync_queue(self, now: float | None = None) -> int:
        """Enqueue every SCHEDULED job that has no live queue entry."""
        now = time.time() if now is None else now
        orphans = await self.db.email_jobs.scheduled_without_queue_entry()
        for job in orphans:
            await self.queue.enqueue(
                job["id"],
                ready_at=float(job["scheduled_at"]),
                payload=job_payload(job),
                max_attempts=int(job["max_retries"]),
                now=now,
            )
        if orphans:
            logger.warning("Re-enqueued %d scheduled jobs missing from the queue", len(orphans))
        return len(orphans)

    async def cancel_job(self, job_id: str, now: float | None = None) -> dict[str, Any]:
        """Cancel a job that has not been sent.

        The queue entry is removed and the job becomes FAILED with error
        "Cancelled by user". Cancelling an already FAILED job changes nothing.

        Raises:
            NotFoundError: Unknown job.
            ConflictError: The job was already sent.
        """
        job = await self.db.email_jobs.get(job_id)
        if job is None:
            raise NotFoundError("Email job not found")
        if job["status"] == JobStatus.SENT.value:
            raise ConflictError("Cannot cancel a sent email")

        await self.queue.remove_by_id(job_id)
        if not await self.db.email_jobs.cancel(job_id, now=now):
            job = await self.db.email_jobs.get(job_id)
            if job is not None and job["status"] == JobStatus.SENT.value:
                raise ConflictError("Cannot cancel a sent email")
        else:
            logger.info("Email job %s cancelled", job_id)
        updated = await self.db.email_jobs.get(job_id)
        if updated is None:
            raise NotFoundError("Email job not found")
        return updated


__all__ = ["BatchScheduler", "ScheduleResult", "job_payload"]
