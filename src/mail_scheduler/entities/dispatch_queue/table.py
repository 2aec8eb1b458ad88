# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dispatch queue table manager: delayed entries keyed by job id.

An entry is eligible once ``ready_at`` has passed and it carries no live
lease. Claims, acknowledgements and failures are conditional UPDATEs on the
lease token, so a consumer holding an expired lease cannot overwrite the work
of the consumer that reclaimed the entry.
"""

from __future__ import annotations

from typing import Any

from ...sql import Float, Integer, String, Table

QUEUED = "queued"
COMPLETED = "completed"
FAILED = "failed"

_FREE_LEASE = "(lease_token IS NULL OR lease_expires_at <= :now)"


class DispatchQueueTable(Table):
    """Dispatch queue table.

    ``generation`` is bumped on every enqueue of an existing entry; a claim
    remembers it in ``leased_generation`` so that acknowledging a lease can
    tell whether the entry was re-enqueued meanwhile.

    Schema: job_id (PK), payload (JSON), ready_at, state, attempts_made,
            max_attempts, lease_token, lease_expires_at, generation,
            leased_generation, failed_reason, finished_at, created_at,
            updated_at.
    """

    name = "dispatch_queue"

    def configure(self) -> None:
        c = self.columns
        c.column("job_id", String, primary_key=True)
        c.column("payload", String, json=True)
        c.column("ready_at", Float, nullable=False)
        c.column("state", String, nullable=False, default=QUEUED)
        c.column("attempts_made", Integer, nullable=False, default=0)
        c.column("max_attempts", Integer, nullable=False, default=3)
        c.column("lease_token", String)
        c.column("lease_expires_at", Float)
        c.column("generation", Integer, nullable=False, default=0)
        c.column("leased_generation", Integer)
        c.column("failed_reason", String)
        c.column("finished_at", Float)
        c.column("created_at", Float)
        c.column("updated_at", Float)

    def indexes(self) -> list[str]:
        return [
            "CREATE INDEX IF NOT EXISTS idx_dispatch_queue_ready ON dispatch_queue (state, ready_at)",
        ]

    async def get(self, job_id: str) -> dict[str, Any] | None:
        return await self.select_one(where={"job_id": job_id})

    async def put(
        self,
        job_id: str,
        ready_at: float,
        payload: dict[str, Any],
        max_attempts: int,
        now: float,
    ) -> None:
        """Insert an entry or replace the existing one for ``job_id``.

        A finished entry is revived with a fresh attempt budget; a queued one
        keeps the attempts it has already consumed. A lease held on the entry
        stays in place and is settled by the consumer holding it.
        """
        record = self._dump({
            "job_id": job_id,
            "payload": payload,
            "ready_at": ready_at,
            "max_attempts": int(max_attempts),
            "now": now,
        })
        await self.execute(
            """
            INSERT INTO dispatch_queue
                (job_id, payload, ready_at, state, attempts_made, max_attempts,
                 generation, created_at, updated_at)
            VALUES (:job_id, :payload, :ready_at, 'queued', 0, :max_attempts, 0, :now, :now)
            ON CONFLICT (job_id) DO UPDATE SET
                payload = excluded.payload,
                ready_at = excluded.ready_at,
                max_attempts = excluded.max_attempts,
                attempts_made = CASE WHEN dispatch_queue.state = 'queued'
                                     THEN dispatch_queue.attempts_made ELSE 0 END,
                generation = dispatch_queue.generation + 1,
                state = 'queued',
                failed_reason = NULL,
                finished_at = NULL,
                updated_at = excluded.updated_at
            """,
            record,
        )

    async def claim_candidates(self, now: float, limit: int = 5) -> list[dict[str, Any]]:
        return await self.fetch_all(
            f"""
            SELECT job_id FROM dispatch_queue
            WHERE state = 'queued' AND ready_at <= :now AND {_FREE_LEASE}
            ORDER BY ready_at ASC
            LIMIT :limit
            """,
            {"now": now, "limit": limit},
        )

    async def try_lease(self, job_id: str, token: str, now: float, lease_until: float) -> bool:
        """Take the lease on one entry if it is still eligible."""
        changed = await self.execute(
            f"""
            UPDATE dispatch_queue SET
                lease_token = :token,
                lease_expires_at = :lease_until,
                leased_generation = generation,
                updated_at = :now
            WHERE job_id = :job_id AND state = 'queued' AND ready_at <= :now AND {_FREE_LEASE}
            """,
            {"job_id": job_id, "token": token, "now": now, "lease_until": lease_until},
        )
        return changed == 1

    async def get_leased(self, job_id: str, token: str) -> dict[str, Any] | None:
        return await self.select_one(where={"job_id": job_id, "lease_token": token})

    async def complete(self, job_id: str, token: str, now: float) -> bool:
        """Finish the lease; the entry completes unless it was re-enqueued."""
        changed = await self.execute(
            """
            UPDATE dispatch_queue SET
                state = CASE WHEN generation = leased_generation THEN 'completed' ELSE state END,
                finished_at = CASE WHEN generation = leased_generation THEN :now ELSE finished_at END,
                lease_token = NULL,
                lease_expires_at = NULL,
                leased_generation = NULL,
                updated_at = :now
            WHERE job_id = :job_id AND lease_token = :token
            """,
            {"job_id": job_id, "token": token, "now": now},
        )
        return changed > 0

    async def settle_failure(
        self,
        job_id: str,
        token: str,
        generation: int,
        attempts_made: int,
        terminal: bool,
        ready_at: float,
        reason: str,
        now: float,
    ) -> bool:
        """Write the outcome of a failed attempt for an entry not re-enqueued meanwhile."""
        changed = await self.execute(
            """
            UPDATE dispatch_queue SET
                attempts_made = :attempts_made,
                state = CASE WHEN :terminal = 1 THEN 'failed' ELSE 'queued' END,
                ready_at = :ready_at,
                failed_reason = :reason,
                finished_at = CASE WHEN :terminal = 1 THEN :now ELSE NULL END,
                lease_token = NULL,
                lease_expires_at = NULL,
                leased_generation = NULL,
                updated_at = :now
            WHERE job_id = :job_id AND lease_token = :token AND generation = :generation
            """,
            {
                "job_id": job_id,
                "token": token,
                "generation": generation,
                "attempts_made": attempts_made,
                "terminal": 1 if terminal else 0,
                "ready_at": ready_at,
                "reason": reason,
                "now": now,
            },
        )
        return changed > 0

    async def release(self, job_id: str, token: str, now: float) -> bool:
        """Drop the lease without touching the entry state."""
        changed = await self.execute(
            """
            UPDATE dispatch_queue SET
                lease_token = NULL, lease_expires_at = NULL, leased_generation = NULL,
                updated_at = :now
            WHERE job_id = :job_id AND lease_token = :token
            """,
            {"job_id": job_id, "token": token, "now": now},
        )
        return changed > 0

    async def remove(self, job_id: str) -> bool:
        return await self.delete(where={"job_id": job_id}) > 0

    async def state_counts(self, now: float) -> dict[str, int]:
        """Count entries as waiting, active, delayed, completed and failed."""
        row = await self.fetch_one(
            """
            SELECT
                SUM(CASE WHEN state = 'queued' AND lease_token IS NOT NULL
                         AND lease_expires_at > :now THEN 1 ELSE 0 END) AS active,
                SUM(CASE WHEN state = 'queued' AND ready_at <= :now
                         AND (lease_token IS NULL OR lease_expires_at <= :now) THEN 1 ELSE 0 END) AS waiting,
                SUM(CASE WHEN state = 'queued' AND ready_at > :now
                         AND (lease_token IS NULL OR lease_expires_at <= :now) THEN 1 ELSE 0 END) AS delayed,
                SUM(CASE WHEN state = 'completed' THEN 1 ELSE 0 END) AS completed,
                SUM(CASE WHEN state = 'failed' THEN 1 ELSE 0 END) AS failed
            FROM dispatch_queue
            """,
            {"now": now},
        )
        keys = ("waiting", "active", "completed", "failed", "delayed")
        return {key: int((row or {}).get(key) or 0) for key in keys}

    async def next_due(self, now: float) -> float | None:
        """Earliest time at which a queued entry may become claimable."""
        row = await self.fetch_one(
            """
            SELECT MIN(CASE WHEN lease_token IS NOT NULL AND lease_expires_at > :now
                            THEN lease_expires_at ELSE ready_at END) AS due
            FROM dispatch_queue WHERE state = 'queued'
            """,
            {"now": now},
        )
        if not row or row["due"] is None:
            return None
        return float(row["due"])

    async def prune_finished(
        self,
        now: float,
        completed_age: float,
        completed_keep: int,
        failed_age: float,
    ) -> int:
        """Delete old completed/failed entries and cap the completed backlog."""
        removed = await self.execute(
            "DELETE FROM dispatch_queue WHERE state = 'completed' AND finished_at <= :cutoff",
            {"cutoff": now - completed_age},
        )
        removed += await self.execute(
            "DELETE FROM dispatch_queue WHERE state = 'failed' AND finished_at <= :cutoff",
            {"cutoff": now - failed_age},
        )
        removed += await self.execute(
            """
            DELETE FROM dispatch_queue WHERE state = 'completed' AND job_id NOT IN (
                SELECT job_id FROM dispatch_queue WHERE state = 'completed'
                ORDER BY finished_at DESC LIMIT :keep
            )
            """,
            {"keep": int(completed_keep)},
        )
        return removed
