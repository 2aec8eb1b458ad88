# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate window table manager: per-sender send timestamps for the hourly cap."""

from __future__ import annotations

from ...sql import Float, Integer, String, Table


class RateWindowTable(Table):
    """Rate window table: one row per successful send.

    Rows older than the window are removed lazily by the limiter and, as a
    safety net, by ``purge_expired`` once their coarse expiry has passed.
    """

    name = "rate_window"

    def configure(self) -> None:
        c = self.columns
        c.column("id", Integer, primary_key=True)
        c.column("sender_id", String, nullable=False)
        c.column("sent_at", Float, nullable=False)
        c.column("expires_at", Float, nullable=False)

    def indexes(self) -> list[str]:
        return ["CREATE INDEX IF NOT EXISTS idx_rate_window_sender ON rate_window (sender_id, sent_at)"]

    async def prune_before(self, sender_id: str, cutoff: float) -> int:
        """Delete the sender's entries sent at or before ``cutoff``."""
        return await self.execute(
            "DELETE FROM rate_window WHERE sender_id = :sender_id AND sent_at <= :cutoff",
            {"sender_id": sender_id, "cutoff": cutoff},
        )

    async def count_for(self, sender_id: str) -> int:
        return await self.count(where={"sender_id": sender_id})

    async def oldest(self, sender_id: str) -> float | None:
        row = await self.fetch_one(
            "SELECT MIN(sent_at) AS oldest FROM rate_window WHERE sender_id = :sender_id",
            {"sender_id": sender_id},
        )
        if not row or row["oldest"] is None:
            return None
        return float(row["oldest"])

    async def record(self, sender_id: str, sent_at: float, expires_at: float) -> None:
        """Append one send and align the sender's entries on their latest expiry.

        The shared expiry only moves forward: recording a send with an older
        ``expires_at`` leaves newer entries untouched.
        """
        await self.insert({"sender_id": sender_id, "sent_at": sent_at, "expires_at": expires_at})
        await self.execute(
            """
            UPDATE rate_window
            SET expires_at = (SELECT MAX(expires_at) FROM rate_window WHERE sender_id = :sender_id)
            WHERE sender_id = :sender_id
            """,
            {"sender_id": sender_id},
        )

    async def clear(self, sender_id: str) -> int:
        return await self.delete(where={"sender_id": sender_id})

    async def purge_expired(self, now: float) -> int:
        return await self.execute(
            "DELETE FROM rate_window WHERE expires_at <= :now", {"now": now}
        )
