# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""PostgreSQL backend on psycopg 3 with an async connection pool.

Queries are written once with ``:name`` placeholders for both backends and
rewritten to psycopg's ``%(name)s`` style here. ``::`` casts are left alone.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from .base import DbAdapter

if TYPE_CHECKING:
    from collections.abc import Sequence

_NAMED_PARAM = re.compile(r"(?<!:):([A-Za-z_]\w*)")


def to_pyformat(query: str) -> str:
    """Rewrite ``:name`` placeholders as ``%(name)s``."""
    return _NAMED_PARAM.sub(r"%(\1)s", query)


class PostgresAdapter(DbAdapter):
    """Adapter for a ``postgresql://`` DSN.

    Attributes:
        dsn: Connection string handed to psycopg.
        pool_size: Upper bound of pooled connections.
    """

    def __init__(self, dsn: str, pool_size: int = 10):
        try:
            import psycopg  # noqa: F401
        except ImportError as exc:
            raise ImportError(
                "PostgreSQL support requires psycopg: pip install 'mail-scheduler[postgresql]'"
            ) from exc
        self.dsn = dsn
        self.pool_size = pool_size
        self._pool: Any = None

    def pk_column(self, name: str) -> str:
        return f'"{name}" SERIAL PRIMARY KEY'

    async def connect(self) -> None:
        if self._pool is not None:
            return
        from psycopg_pool import AsyncConnectionPool

        self._pool = AsyncConnectionPool(self.dsn, min_size=1, max_size=self.pool_size, open=False)
        await self._pool.open()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _cursor(self, *, rows: bool = False) -> AsyncIterator[Any]:
        """Pooled connection cursor; the transaction commits when the block exits cleanly."""
        from psycopg.rows import dict_row

        await self.connect()
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row if rows else None) as cur:
                yield cur

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        async with self._cursor() as cur:
            await cur.execute(to_pyformat(query), params or {})
            return cur.rowcount

    async def execute_many(self, query: str, params_list: Sequence[dict[str, Any]]) -> int:
        if not params_list:
            return 0
        async with self._cursor() as cur:
            await cur.executemany(to_pyformat(query), list(params_list))
        return len(params_list)

    async def fetch_one(self, query: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        async with self._cursor(rows=True) as cur:
            await cur.execute(to_pyformat(query), params or {})
            return await cur.fetchone()

    async def fetch_all(self, query: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._cursor(rows=True) as cur:
            await cur.execute(to_pyformat(query), params or {})
            return await cur.fetchall()

    async def column_names(self, table: str) -> set[str]:
        rows = await self.fetch_all(
            "SELECT column_name FROM information_schema.columns WHERE table_name = :table",
            {"table": table},
        )
        return {row["column_name"] for row in rows}


__all__ = ["PostgresAdapter", "to_pyformat"]
