# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the per-sender sliding-window limiter."""

import pytest

from conftest import T0
from mail_scheduler.rate_limit import RateLimiter


async def test_empty_window_allows_and_resets_in_an_hour(limiter):
    result = await limiter.check_limit("s1", 2, now=T0)
    assert result.allowed is True
    assert result.remaining_slots == 2
    assert result.reset_at == T0 + 3600


async def test_increment_is_counted_within_the_hour(limiter):
    await limiter.increment_count("s1", T0)
    result = await limiter.check_limit("s1", 2, now=T0 + 10)
    assert result.allowed is True
    assert result.remaining_slots == 1
    assert result.reset_at == T0 + 3600


async def test_full_window_denies_with_zero_slots(limiter):
    for offset in (0, 1, 2):
        await limiter.increment_count("s1", T0 + offset)
    result = await limiter.check_limit("s1", 2, now=T0 + 5)
    assert result.allowed is False
    assert result.remaining_slots == 0


async def test_entry_stops_counting_after_the_window(limiter):
    await limiter.increment_count("s1", T0)
    assert (await limiter.check_limit("s1", 1, now=T0 + 3599)).allowed is False
    # The boundary itself is outside the window
    result = await limiter.check_limit("s1", 1, now=T0 + 3600)
    assert result.allowed is True
    assert result.remaining_slots == 1


async def test_senders_are_independent(limiter):
    await limiter.increment_count("s1", T0)
    assert (await limiter.check_limit("s1", 1, now=T0)).allowed is False
    assert (await limiter.check_limit("s2", 1, now=T0)).allowed is True


async def test_next_available_time(limiter):
    assert await limiter.get_next_available_time("s1", now=T0) == T0
    await limiter.increment_count("s1", T0 + 20)
    await limiter.increment_count("s1", T0 + 40)
    assert await limiter.get_next_available_time("s1", now=T0 + 50) == T0 + 20 + 3600


async def test_increment_refreshes_expiry_of_all_entries(db, limiter):
    await limiter.increment_count("s1", T0)
    await limiter.increment_count("s1", T0 + 100)
    rows = await db.rate_window.select(where={"sender_id": "s1"})
    assert {row["expires_at"] for row in rows} == {T0 + 100 + 7200}


async def test_late_recorded_send_does_not_shorten_expiry(db, limiter):
    await limiter.increment_count("s1", T0)
    await limiter.increment_count("s1", T0 - 5000)
    rows = await db.rate_window.select(where={"sender_id": "s1"})
    assert {row["expires_at"] for row in rows} == {T0 + 7200}
    assert await limiter.purge_expired(now=T0 + 7199) == 0


async def test_purge_expired_only_removes_expired(limiter):
    await limiter.increment_count("old", T0)
    await limiter.increment_count("new", T0 + 5000)
    removed = await limiter.purge_expired(now=T0 + 7200)
    assert removed == 1
    assert (await limiter.check_limit("new", 1, now=T0 + 5001)).allowed is False


async def test_reset_limit_forgets_history(limiter):
    await limiter.increment_count("s1", T0)
    await limiter.reset_limit("s1")
    assert (await limiter.check_limit("s1", 1, now=T0)).allowed is True


async def test_custom_window(db):
    limiter = RateLimiter(db, window=60, expiry=120)
    await limiter.increment_count("s1", T0)
    assert (await limiter.check_limit("s1", 1, now=T0 + 59)).allowed is False
    assert (await limiter.check_limit("s1", 1, now=T0 + 60)).allowed is True


@pytest.mark.parametrize("limit,sent", [(1, 1), (2, 5), (3, 3)])
async def test_check_is_monotonic_once_limit_reached(limiter, limit, sent):
    for offset in range(sent):
        await limiter.increment_count("s1", T0 + offset)
    result = await limiter.check_limit("s1", limit, now=T0 + sent)
    assert result.allowed is False
    assert result.remaining_slots == 0
