# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table managers: schema from ``configure()`` plus row helpers.

A subclass sets ``name``, declares its columns in ``configure()`` and adds
the queries of its entity on top of the helpers below. Columns declared with
``json=True`` are serialized on the way in and parsed on the way out, so
entity code only ever sees Python values.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from .column import Columns

if TYPE_CHECKING:
    from .adapters import DbAdapter
    from .sqldb import SqlDb

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class Table:
    """Base class for the entity tables.

    Attributes:
        name: Table name in the database.
        db: Owning SqlDb.
        columns: Declared columns.
    """

    name: str

    def __init__(self, db: SqlDb) -> None:
        if not getattr(self, "name", None):
            raise ValueError(f"{type(self).__name__} has no table name")
        self.db = db
        self.columns = Columns()
        self.configure()
        self._json_columns = tuple(self.columns.json_columns())

    def configure(self) -> None:
        """Declare columns with ``self.columns.column(...)``."""

    def indexes(self) -> list[str]:
        """CREATE INDEX IF NOT EXISTS statements run after the table is created."""
        return []

    @property
    def adapter(self) -> DbAdapter:
        return self.db.adapter

    # ------------------------------------------------------------------ schema
    def create_table_sql(self) -> str:
        cols = list(self.columns.values())
        clauses = [
            self.adapter.pk_column(col.name) if col.primary_key and col.type_ == "INTEGER" else col.to_sql()
            for col in cols
        ]
        clauses += [
            f'FOREIGN KEY ("{col.name}") REFERENCES {col.relation_table}("{col.relation_pk}")'
            for col in cols
            if col.relation_sql and col.relation_table
        ]
        body = ",\n    ".join(clauses)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {body}\n)"

    async def create_schema(self) -> None:
        await self.adapter.execute(self.create_table_sql())
        for statement in self.indexes():
            await self.adapter.execute(statement)

    async def sync_schema(self) -> None:
        """Add declared columns that an older database file lacks."""
        present = await self.adapter.column_names(self.name)
        missing = [col for name, col in self.columns.items() if name not in present and not col.primary_key]
        for col in missing:
            logger.info("Adding column %s.%s", self.name, col.name)
            await self.adapter.execute(f"ALTER TABLE {self.name} ADD COLUMN {col.to_sql()}")

    # ------------------------------------------------------------------ json
    def _dump(self, values: Row) -> Row:
        out = dict(values)
        for key in self._json_columns:
            if out.get(key) is not None:
                out[key] = json.dumps(out[key])
        return out

    def _load(self, row: Row | None) -> Row | None:
        if row is None:
            return None
        out = dict(row)
        for key in self._json_columns:
            if isinstance(out.get(key), str):
                out[key] = json.loads(out[key])
        return out

    def _load_all(self, rows: list[Row]) -> list[Row]:
        return [self._load(row) for row in rows]  # type: ignore[misc]

    # ------------------------------------------------------------------ rows
    async def insert(self, values: Row) -> int:
        return await self.adapter.insert(self.name, self._dump(values))

    async def select(
        self,
        columns: list[str] | None = None,
        where: Row | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        """Rows matching ``where`` (equality, ``None`` meaning IS NULL)."""
        return self._load_all(await self.adapter.select(self.name, columns, where, order_by, limit))

    async def select_one(self, columns: list[str] | None = None, where: Row | None = None) -> Row | None:
        return self._load(await self.adapter.select_one(self.name, columns, where))

    async def update(self, values: Row, where: Row) -> int:
        return await self.adapter.update(self.name, self._dump(values), where)

    async def delete(self, where: Row) -> int:
        return await self.adapter.delete(self.name, where)

    async def count(self, where: Row | None = None) -> int:
        return await self.adapter.count(self.name, where)

    # ------------------------------------------------------------------ raw SQL
    async def fetch_one(self, query: str, params: Row | None = None) -> Row | None:
        return self._load(await self.adapter.fetch_one(query, params))

    async def fetch_all(self, query: str, params: Row | None = None) -> list[Row]:
        return self._load_all(await self.adapter.fetch_all(query, params))

    async def execute(self, query: str, params: Row | None = None) -> int:
        """Run a write statement and return the affected row count."""
        return await self.adapter.execute(query, params)


__all__ = ["Row", "Table"]
