# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base adapter class for async database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence


class DbAdapter(ABC):
    """Abstract base class for async database adapters.

    All queries use :name placeholders (supported by both SQLite and PostgreSQL).
    The generic CRUD helpers (insert, select, update, delete, count) are built
    on top of the abstract primitives and shared by every backend.
    """

    def pk_column(self, name: str) -> str:
        """Return SQL definition for autoincrement primary key column."""
        return f'"{name}" INTEGER PRIMARY KEY AUTOINCREMENT'

    def _sql_name(self, name: str) -> str:
        """Quote an identifier (handles reserved words like 'user')."""
        return f'"{name}"'

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close database connection."""
        ...

    @abstractmethod
    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        ...

    @abstractmethod
    async def execute_many(
        self, query: str, params_list: Sequence[dict[str, Any]]
    ) -> int:
        """Execute query once per params dict inside a single transaction.

        Either every row is written or none is.
        """
        ...

    @abstractmethod
    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        ...

    @abstractmethod
    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        ...

    @abstractmethod
    async def column_names(self, table: str) -> set[str]:
        """Return the column names currently present in ``table``."""
        ...

    # -------------------------------------------------------------------------
    # Generic CRUD helpers
    # -------------------------------------------------------------------------

    def _where_clause(self, where: dict[str, Any] | None) -> tuple[str, dict[str, Any]]:
        if not where:
            return "", {}
        parts = []
        params: dict[str, Any] = {}
        for idx, (col, value) in enumerate(where.items()):
            if value is None:
                parts.append(f"{self._sql_name(col)} IS NULL")
            else:
                key = f"w_{idx}"
                parts.append(f"{self._sql_name(col)} = :{key}")
                params[key] = value
        return " WHERE " + " AND ".join(parts), params

    async def insert(self, table: str, data: dict[str, Any]) -> int:
        """Insert a row, return affected row count."""
        columns = list(data.keys())
        col_list = ", ".join(self._sql_name(c) for c in columns)
        placeholders = ", ".join(f":{c}" for c in columns)
        return await self.execute(
            f"INSERT INTO {table} ({col_list}) VALUES ({placeholders})", data
        )

    async def select(
        self,
        table: str,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        cols = ", ".join(self._sql_name(c) for c in columns) if columns else "*"
        clause, params = self._where_clause(where)
        query = f"SELECT {cols} FROM {table}{clause}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT :limit"
            params["limit"] = int(limit)
        return await self.fetch_all(query, params)

    async def select_one(
        self,
        table: str,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        rows = await self.select(table, columns, where, limit=1)
        return rows[0] if rows else None

    async def update(self, table: str, values: dict[str, Any], where: dict[str, Any]) -> int:
        set_parts = []
        params: dict[str, Any] = {}
        for idx, (col, value) in enumerate(values.items()):
            key = f"v_{idx}"
            set_parts.append(f"{self._sql_name(col)} = :{key}")
            params[key] = value
        clause, where_params = self._where_clause(where)
        params.update(where_params)
        return await self.execute(
            f"UPDATE {table} SET {', '.join(set_parts)}{clause}", params
        )

    async def delete(self, table: str, where: dict[str, Any]) -> int:
        clause, params = self._where_clause(where)
        return await self.execute(f"DELETE FROM {table}{clause}", params)

    async def count(self, table: str, where: dict[str, Any] | None = None) -> int:
        clause, params = self._where_clause(where)
        row = await self.fetch_one(f"SELECT COUNT(*) AS cnt FROM {table}{clause}", params)
        return int(row["cnt"]) if row else 0
