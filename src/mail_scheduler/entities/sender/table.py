# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Senders table manager: From identities and their send limits."""

from __future__ import annotations

import time
from typing import Any

from ...sql import Float, Integer, String, Table
from ...uid import get_uuid
from .schema import DEFAULT_DELAY_SECONDS, DEFAULT_HOURLY_LIMIT

UPDATABLE_FIELDS = ("email", "name", "hourly_limit", "delay_seconds", "is_active")


class SendersTable(Table):
    """Senders table.

    The worker reads ``hourly_limit`` and ``delay_seconds`` at dispatch time,
    so changes apply to jobs that are already queued.

    Schema: id (PK), user_id, email, name, hourly_limit, delay_seconds,
            is_active (0/1), created_at, updated_at (epoch seconds).
    """

    name = "senders"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("user_id", String, nullable=False).relation("users")
        c.column("email", String, nullable=False)
        c.column("name", String)
        c.column("hourly_limit", Integer, nullable=False, default=DEFAULT_HOURLY_LIMIT)
        c.column("delay_seconds", Integer, nullable=False, default=DEFAULT_DELAY_SECONDS)
        c.column("is_active", Integer, nullable=False, default=1)
        c.column("created_at", Float)
        c.column("updated_at", Float)

    def indexes(self) -> list[str]:
        return ["CREATE INDEX IF NOT EXISTS idx_senders_user ON senders (user_id)"]

    def _decode(self, sender: dict[str, Any]) -> dict[str, Any]:
        sender["is_active"] = bool(sender.get("is_active", 1))
        return sender

    async def add(self, data: dict[str, Any], now: float | None = None) -> dict[str, Any]:
        """Insert a sender and return the stored row."""
        ts = time.time() if now is None else now
        record = {
            "id": data.get("id") or get_uuid(),
            "user_id": data["user_id"],
            "email": data["email"],
            "name": data.get("name"),
            "hourly_limit": int(data.get("hourly_limit") or DEFAULT_HOURLY_LIMIT),
            "delay_seconds": int(data.get("delay_seconds") or DEFAULT_DELAY_SECONDS),
            "is_active": 1 if data.get("is_active", True) else 0,
            "created_at": ts,
            "updated_at": ts,
        }
        await self.insert(record)
        return self._decode(record)

    async def get(self, sender_id: str) -> dict[str, Any] | None:
        sender = await self.select_one(where={"id": sender_id})
        return self._decode(sender) if sender else None

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Return the user's senders, newest first."""
        rows = await self.select(where={"user_id": user_id}, order_by="created_at DESC")
        return [self._decode(row) for row in rows]

    async def update_fields(
        self, sender_id: str, fields: dict[str, Any], now: float | None = None
    ) -> dict[str, Any] | None:
        """Write the given fields and return the updated sender (None if missing)."""
        values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        if values:
            values["updated_at"] = time.time() if now is None else now
            changed = await self.update(values, where={"id": sender_id})
            if not changed:
                return None
        return await self.get(sender_id)

    async def set_limits(
        self, sender_id: str, hourly_limit: int, delay_seconds: int, now: float | None = None
    ) -> None:
        await self.update(
            {
                "hourly_limit": int(hourly_limit),
                "delay_seconds": int(delay_seconds),
                "updated_at": time.time() if now is None else now,
            },
            where={"id": sender_id},
        )

    async def remove(self, sender_id: str) -> bool:
        """Delete a sender. Its e-mail jobs are left in place."""
        return await self.delete(where={"id": sender_id}) > 0
