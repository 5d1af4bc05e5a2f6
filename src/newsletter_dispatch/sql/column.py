# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Column definitions used by Table.configure()."""

from __future__ import annotations

from typing import Any

String = "TEXT"
Integer = "INTEGER"
Boolean = "INTEGER"
Timestamp = "TIMESTAMP"

_SQL_KEYWORD_DEFAULTS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL"}


class Column:
    """Single column definition.

    Attributes:
        name: Column name.
        type_: SQL type name (TEXT, INTEGER, TIMESTAMP).
        primary_key: Whether the column is the table primary key.
        nullable: Whether NULL values are accepted.
        default: Default value; SQL keywords like CURRENT_TIMESTAMP are emitted raw.
        json_encoded: Whether values are stored as JSON text.
    """

    def __init__(
        self,
        name: str,
        type_: str = String,
        *,
        primary_key: bool = False,
        nullable: bool = True,
        default: Any = None,
        json_encoded: bool = False,
    ) -> None:
        self.name = name
        self.type_ = type_
        self.primary_key = primary_key
        self.nullable = nullable
        self.default = default
        self.json_encoded = json_encoded

    def _default_sql(self) -> str:
        value = self.default
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.upper() in _SQL_KEYWORD_DEFAULTS:
            return value.upper()
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def to_sql(self) -> str:
        """Return the column definition fragment for CREATE/ALTER TABLE."""
        parts = [f'"{self.name}"', self.type_]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self._default_sql()}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"Column({self.name!r}, {self.type_!r})"


class Columns(dict):
    """Ordered mapping of column name to Column."""

    def column(self, name: str, type_: str = String, **kwargs: Any) -> Column:
        col = Column(name, type_, **kwargs)
        self[name] = col
        return col

    def json_columns(self) -> list[str]:
        return [name for name, col in self.items() if col.json_encoded]

    def primary_key(self) -> Column | None:
        for col in self.values():
            if col.primary_key:
                return col
        return None


__all__ = ["Boolean", "Column", "Columns", "Integer", "String", "Timestamp"]
