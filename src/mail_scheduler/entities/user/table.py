# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Users table manager: accounts that own senders."""

from __future__ import annotations

import time
from typing import Any

from ...errors import NotFoundError
from ...sql import Float, String, Table
from ...uid import get_uuid


class UsersTable(Table):
    """Users table: one row per e-mail address.

    Schema: id (PK), email (unique), name, image, email_verified_at,
            created_at, updated_at (epoch seconds).
    """

    name = "users"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("email", String, nullable=False, unique=True)
        c.column("name", String)
        c.column("image", String)
        c.column("email_verified_at", Float)
        c.column("created_at", Float)
        c.column("updated_at", Float)

    async def get(self, user_id: str) -> dict[str, Any] | None:
        return await self.select_one(where={"id": user_id})

    async def get_by_email(self, email: str) -> dict[str, Any] | None:
        return await self.select_one(where={"email": email})

    async def sync(
        self,
        email: str,
        name: str | None = None,
        image: str | None = None,
        now: float | None = None,
    ) -> dict[str, Any]:
        """Create or refresh a user identified by e-mail.

        Existing users keep their id and creation time; name, image and the
        verification time are overwritten.
        """
        ts = time.time() if now is None else now
        await self.execute(
            """
            INSERT INTO users (id, email, name, image, email_verified_at, created_at, updated_at)
            VALUES (:id, :email, :name, :image, :ts, :ts, :ts)
            ON CONFLICT (email) DO UPDATE SET
                name = excluded.name,
                image = excluded.image,
                email_verified_at = excluded.email_verified_at,
                updated_at = excluded.updated_at
            """,
            {"id": get_uuid(), "email": email, "name": name, "image": image, "ts": ts},
        )
        user = await self.get_by_email(email)
        if user is None:
            raise NotFoundError(f"User {email} vanished after sync")
        return user
