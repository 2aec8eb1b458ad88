# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Column definitions used by Table.configure()."""

from __future__ import annotations

from typing import Any

Integer = "INTEGER"
String = "TEXT"
Boolean = "INTEGER"
Timestamp = "TIMESTAMP"
# DOUBLE PRECISION keeps sub-second epoch values on both SQLite and PostgreSQL
Float = "DOUBLE PRECISION"


class Column:
    """Single column definition.

    Attributes:
        name: Column name.
        type_: SQL type name (one of the module level constants).
        primary_key: Whether the column is the primary key.
        nullable: Whether NULL values are allowed.
        default: Default value; ``"CURRENT_TIMESTAMP"`` is emitted unquoted.
        json: Whether values are JSON encoded on write and decoded on read.
        unique: Whether a UNIQUE constraint is emitted.
    """

    def __init__(
        self,
        name: str,
        type_: str,
        *,
        primary_key: bool = False,
        nullable: bool = True,
        default: Any = None,
        json: bool = False,
        unique: bool = False,
    ) -> None:
        self.name = name
        self.type_ = type_
        self.primary_key = primary_key
        self.nullable = nullable
        self.default = default
        self.json = json
        self.unique = unique
        self.relation_table: str | None = None
        self.relation_pk = "id"
        self.relation_sql = False

    def relation(self, table: str, pk: str = "id", sql: bool = False) -> Column:
        """Declare a reference to another table (FOREIGN KEY when ``sql``)."""
        self.relation_table = table
        self.relation_pk = pk
        self.relation_sql = sql
        return self

    def _default_sql(self) -> str:
        value = self.default
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.upper() == "CURRENT_TIMESTAMP":
            return "CURRENT_TIMESTAMP"
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def to_sql(self) -> str:
        """Return the column clause for CREATE TABLE / ALTER TABLE."""
        parts = [f'"{self.name}"', self.type_]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")
        if self.unique and not self.primary_key:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self._default_sql()}")
        return " ".join(parts)


class Columns(dict[str, Column]):
    """Ordered mapping of column name to :class:`Column`."""

    def column(self, name: str, type_: str, **kwargs: Any) -> Column:
        col = Column(name, type_, **kwargs)
        self[name] = col
        return col

    def json_columns(self) -> list[str]:
        return [name for name, col in self.items() if col.json]

    def primary_key(self) -> str | None:
        for name, col in self.items():
            if col.primary_key:
                return name
        return None


__all__ = ["Boolean", "Column", "Columns", "Float", "Integer", "String", "Timestamp"]
