# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Database manager holding an adapter and the registered tables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .adapters import DbAdapter, get_adapter

if TYPE_CHECKING:
    from .table import Table


class SqlDb:
    """Async database with table registration.

    Tables are registered by class; ``check_structure()`` creates every
    registered table and ``sync_schema()`` adds columns missing from older
    databases.

    Attributes:
        connection_string: The string the adapter was built from.
        adapter: Backend adapter executing the queries.
        tables: Registered table managers by name.
    """

    def __init__(self, connection_string: str) -> None:
        self.connection_string = connection_string
        self.adapter: DbAdapter = get_adapter(connection_string)
        self.tables: dict[str, Table] = {}

    def add_table(self, table_class: type[Table]) -> Table:
        """Instantiate and register a table manager."""
        instance = table_class(self)
        self.tables[instance.name] = instance
        return instance

    def table(self, name: str) -> Table:
        """Return registered table by name.

        Raises:
            KeyError: If no table with that name is registered.
        """
        if name not in self.tables:
            raise KeyError(f"Table '{name}' is not registered")
        return self.tables[name]

    async def connect(self) -> None:
        await self.adapter.connect()

    async def close(self) -> None:
        await self.adapter.close()

    async def check_structure(self) -> None:
        """Create all registered tables (and indexes) if missing."""
        for table in self.tables.values():
            await table.create_schema()

    async def sync_schema(self) -> None:
        for table in self.tables.values():
            await table.sync_schema()

    async def ping(self) -> bool:
        """Run a trivial query, raising if the database is unreachable."""
        row = await self.adapter.fetch_one("SELECT 1 AS ok")
        return bool(row and row["ok"] == 1)


__all__ = ["SqlDb"]
