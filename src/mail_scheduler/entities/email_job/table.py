# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""E-mail jobs table manager.

Every status transition is a single UPDATE guarded by
``status = 'SCHEDULED'``, so SENT and FAILED rows are never modified again and
concurrent writers for the same job cannot move it out of a terminal state.
"""

from __future__ import annotations

import time
from typing import Any

from ...sql import Float, Integer, String, Table
from .schema import CANCELLED_REASON, DEFAULT_MAX_RETRIES, JobStatus

INSERT_COLUMNS = (
    "id",
    "sender_id",
    "recipient",
    "subject",
    "body",
    "scheduled_at",
    "status",
    "retry_count",
    "max_retries",
    "created_at",
    "updated_at",
)


class EmailJobsTable(Table):
    """E-mail jobs: one row per recipient, never deleted.

    Schema: id (PK), sender_id, recipient, subject, body, scheduled_at,
            sent_at, status, error, retry_count, max_retries,
            created_at, updated_at (times in epoch seconds).
    """

    name = "email_jobs"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("sender_id", String, nullable=False).relation("senders")
        c.column("recipient", String, nullable=False)
        c.column("subject", String, nullable=False)
        c.column("body", String, nullable=False, default="")
        c.column("scheduled_at", Float, nullable=False)
        c.column("sent_at", Float)
        c.column("status", String, nullable=False, default=JobStatus.SCHEDULED.value)
        c.column("error", String)
        c.column("retry_count", Integer, nullable=False, default=0)
        c.column("max_retries", Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
        c.column("created_at", Float)
        c.column("updated_at", Float)

    def indexes(self) -> list[str]:
        return [
            "CREATE INDEX IF NOT EXISTS idx_email_jobs_sender ON email_jobs (sender_id, scheduled_at)",
            "CREATE INDEX IF NOT EXISTS idx_email_jobs_status ON email_jobs (status)",
        ]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, job_id: str) -> dict[str, Any] | None:
        return await self.select_one(where={"id": job_id})

    async def list_for_sender(
        self, sender_id: str, status: JobStatus | str | None = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        """Return the sender's jobs ordered by scheduled time."""
        where: dict[str, Any] = {"sender_id": sender_id}
        if status is not None:
            where["status"] = JobStatus(status).value
        return await self.select(where=where, order_by="scheduled_at ASC", limit=limit)

    async def count_for_sender(self, sender_id: str) -> int:
        return await self.count(where={"sender_id": sender_id})

    async def count_by_status(
        self, sender_id: str, since: float | None = None
    ) -> dict[str, int]:
        """Group the sender's jobs by status, optionally only those created since ``since``."""
        query = "SELECT status, COUNT(*) AS cnt FROM email_jobs WHERE sender_id = :sender_id"
        params: dict[str, Any] = {"sender_id": sender_id}
        if since is not None:
            query += " AND created_at >= :since"
            params["since"] = since
        query += " GROUP BY status"
        rows = await self.fetch_all(query, params)
        return {row["status"]: int(row["cnt"]) for row in rows}

    async def scheduled_without_queue_entry(self) -> list[dict[str, Any]]:
        """SCHEDULED jobs that have no live entry in the dispatch queue."""
        return await self.fetch_all(
            """
            SELECT j.* FROM email_jobs j
            LEFT JOIN dispatch_queue q ON q.job_id = j.id AND q.state = 'queued'
            WHERE j.status = 'SCHEDULED' AND q.job_id IS NULL
            ORDER BY j.scheduled_at ASC
            """
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_batch(self, jobs: list[dict[str, Any]]) -> int:
        """Insert all jobs in one transaction; nothing is written on failure."""
        col_list = ", ".join(f'"{c}"' for c in INSERT_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in INSERT_COLUMNS)
        rows = [{c: job.get(c) for c in INSERT_COLUMNS} for job in jobs]
        return await self.db.adapter.execute_many(
            f"INSERT INTO email_jobs ({col_list}) VALUES ({placeholders})", rows
        )

    async def reschedule(self, job_id: str, scheduled_at: float, now: float | None = None) -> bool:
        """Move a SCHEDULED job to a new dispatch time."""
        changed = await self.execute(
            """
            UPDATE email_jobs SET scheduled_at = :scheduled_at, updated_at = :now
            WHERE id = :id AND status = 'SCHEDULED'
            """,
            {"id": job_id, "scheduled_at": scheduled_at, "now": time.time() if now is None else now},
        )
        return changed > 0

    async def mark_sent(self, job_id: str, sent_at: float | None = None) -> bool:
        """SCHEDULED -> SENT, clearing any previous error."""
        ts = time.time() if sent_at is None else sent_at
        changed = await self.execute(
            """
            UPDATE email_jobs SET status = 'SENT', sent_at = :ts, error = NULL, updated_at = :ts
            WHERE id = :id AND status = 'SCHEDULED'
            """,
            {"id": job_id, "ts": ts},
        )
        return changed > 0

    async def record_failure(
        self, job_id: str, error: str, now: float | None = None
    ) -> dict[str, Any] | None:
        """Count one failed attempt and fail the job once retries are exhausted.

        The retry counter, the error text and the FAILED transition are one
        UPDATE, so no reader ever sees ``retry_count >= max_retries`` on a
        SCHEDULED job.

        Returns:
            The updated job, or None when the job is missing or already terminal.
        """
        changed = await self.execute(
            """
            UPDATE email_jobs SET
                retry_count = retry_count + 1,
                error = :error,
                status = CASE WHEN retry_count + 1 >= max_retries THEN 'FAILED' ELSE status END,
                updated_at = :now
            WHERE id = :id AND status = 'SCHEDULED'
            """,
            {"id": job_id, "error": error, "now": time.time() if now is None else now},
        )
        if not changed:
            return None
        return await self.get(job_id)

    async def mark_failed(self, job_id: str, error: str | None = None, now: float | None = None) -> bool:
        """SCHEDULED -> FAILED, keeping the previous error when none is given."""
        changed = await self.execute(
            """
            UPDATE email_jobs SET status = 'FAILED', error = COALESCE(:error, error), updated_at = :now
            WHERE id = :id AND status = 'SCHEDULED'
            """,
            {"id": job_id, "error": error, "now": time.time() if now is None else now},
        )
        return changed > 0

    async def cancel(self, job_id: str, now: float | None = None) -> bool:
        return await self.mark_failed(job_id, CANCELLED_REASON, now=now)
