# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sliding-window hourly rate limiter using persisted send timestamps.

Each successful send appends one row to the rate window table. A check first
drops the sender's rows that left the trailing window, then counts what is
left. Both are single statements executed by the database, so concurrent
consumers never lose an increment.

Example:
    Using the rate limiter::

        limiter = RateLimiter(db)
        result = await limiter.check_limit(sender_id, sender["hourly_limit"])
        if not result.allowed:
            retry_at = await limiter.get_next_available_time(sender_id)
        else:
            await send_message(msg)
            await limiter.increment_count(sender_id)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .scheduler_db import SchedulerDb

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600
EXPIRY_SECONDS = 7200


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a limit check.

    Attributes:
        allowed: True when another send fits in the window.
        remaining_slots: Sends left before the cap, never negative.
        reset_at: When the oldest counted send leaves the window
            (``now + window`` when the window is empty).
    """

    allowed: bool
    remaining_slots: int
    reset_at: float


class RateLimiter:
    """Per-sender sliding-window limiter backed by the rate window table.

    The check does not reserve a slot: with several consumers, sends checked
    concurrently may all be allowed and the window can overshoot the cap by
    at most the number of consumers.

    Attributes:
        db: The SchedulerDb holding the rate window table.
        window: Length of the sliding window in seconds.
        expiry: Coarse expiry pushed forward on every send.
    """

    def __init__(
        self,
        db: SchedulerDb,
        window: float = WINDOW_SECONDS,
        expiry: float = EXPIRY_SECONDS,
    ):
        self.db = db
        self.window = window
        self.expiry = expiry

    async def check_limit(
        self, sender_id: str, hourly_limit: int, now: float | None = None
    ) -> RateLimitResult:
        """Check whether the sender may send one more e-mail now.

        Entries older than the window are deleted as a side effect.

        Args:
            sender_id: The sender identifier.
            hourly_limit: Maximum sends in any trailing window.
            now: Current time (epoch seconds); defaults to ``time.time()``.
        """
        now = time.time() if now is None else now
        table = self.db.rate_window
        await table.prune_before(sender_id, now - self.window)
        count = await table.count_for(sender_id)

        remaining = max(0, hourly_limit - count)
        allowed = count < hourly_limit

        reset_at = now + self.window
        if count > 0:
            oldest = await table.oldest(sender_id)
            if oldest is not None:
                reset_at = oldest + self.window

        if not allowed:
            logger.info(
                "Rate limit hit for sender %s: %d sent in window, limit %d",
                sender_id, count, hourly_limit,
            )
        return RateLimitResult(allowed=allowed, remaining_slots=remaining, reset_at=reset_at)

    async def increment_count(self, sender_id: str, timestamp: float | None = None) -> None:
        """Record one send. Must be called exactly once per delivered e-mail."""
        ts = time.time() if timestamp is None else timestamp
        await self.db.rate_window.record(sender_id, ts, ts + self.expiry)

    async def get_next_available_time(self, sender_id: str, now: float | None = None) -> float:
        """Return when the oldest counted send leaves the window, or now if none."""
        now = time.time() if now is None else now
        oldest = await self.db.rate_window.oldest(sender_id)
        if oldest is None:
            return now
        return oldest + self.window

    async def reset_limit(self, sender_id: str) -> None:
        """Forget the sender's send history."""
        removed = await self.db.rate_window.clear(sender_id)
        logger.info("Rate window reset for sender %s (%d entries)", sender_id, removed)

    async def purge_expired(self, now: float | None = None) -> int:
        """Delete entries whose coarse expiry has passed (all senders)."""
        now = time.time() if now is None else now
        return await self.db.rate_window.purge_expired(now)


__all__ = ["EXPIRY_SECONDS", "RateLimitResult", "RateLimiter", "WINDOW_SECONDS"]
