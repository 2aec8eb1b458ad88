# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite backend on aiosqlite.

Every operation opens its own connection, so consumers running in different
tasks never share a cursor. The file is switched to WAL on ``connect()`` so
readers do not block the single writer. A ``:memory:`` database does not
survive between operations; tests use a file in ``tmp_path``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import aiosqlite

from .base import DbAdapter

if TYPE_CHECKING:
    from collections.abc import Sequence


def _as_dicts(cursor: aiosqlite.Cursor, rows: Sequence[Sequence[Any]]) -> list[dict[str, Any]]:
    names = [d[0] for d in cursor.description]
    return [dict(zip(names, row, strict=True)) for row in rows]


class SqliteAdapter(DbAdapter):
    """Adapter for a SQLite file.

    Attributes:
        db_path: Database file.
        busy_timeout: Seconds to wait on a locked database before failing.
    """

    def __init__(self, db_path: str, busy_timeout: float = 10.0):
        self.db_path = db_path or ":memory:"
        self.busy_timeout = busy_timeout

    def _open(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=self.busy_timeout)

    async def connect(self) -> None:
        if self.db_path == ":memory:":
            return
        async with self._open() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.commit()

    async def close(self) -> None:
        """Nothing to release: connections live for one operation."""

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        async with self._open() as conn:
            cursor = await conn.execute(query, params or {})
            await conn.commit()
            return cursor.rowcount

    async def execute_many(self, query: str, params_list: Sequence[dict[str, Any]]) -> int:
        """Run ``query`` per parameter set in one transaction; roll back on any error."""
        if not params_list:
            return 0
        async with self._open() as conn:
            try:
                await conn.executemany(query, params_list)
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()
        return len(params_list)

    async def fetch_one(self, query: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        async with self._open() as conn, conn.execute(query, params or {}) as cursor:
            row = await cursor.fetchone()
            return _as_dicts(cursor, [row])[0] if row is not None else None

    async def fetch_all(self, query: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._open() as conn, conn.execute(query, params or {}) as cursor:
            return _as_dicts(cursor, await cursor.fetchall())

    async def column_names(self, table: str) -> set[str]:
        return {row["name"] for row in await self.fetch_all(f"PRAGMA table_info({table})")}


__all__ = ["SqliteAdapter"]
