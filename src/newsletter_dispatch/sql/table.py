# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table base class with Columns-based schema (async version)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .column import Columns

if TYPE_CHECKING:
    from .sqldb import SqlDb


class Table:
    """Base class for async table managers.

    Subclasses define columns via the configure() hook and implement the
    domain-specific queries on top of the generic CRUD helpers.

    Attributes:
        name: Table name in database.
        db: SqlDb instance reference.
        columns: Column definitions.
        unique_together: Column groups that get a UNIQUE table constraint.
    """

    name: str
    unique_together: tuple[tuple[str, ...], ...] = ()

    def __init__(self, db: SqlDb) -> None:
        self.db = db
        if not getattr(self, "name", None):
            raise ValueError(f"{type(self).__name__} must define 'name'")

        self.columns = Columns()
        self.configure()

    def configure(self) -> None:
        """Override to define columns. Called during __init__."""
        pass

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_table_sql(self) -> str:
        """Generate CREATE TABLE IF NOT EXISTS statement."""
        col_defs = []
        for col in self.columns.values():
            if col.primary_key and col.type_ == "INTEGER":
                col_defs.append(self.db.adapter.pk_column(col.name))
            else:
                col_defs.append(col.to_sql())

        for group in self.unique_together:
            quoted = ", ".join(f'"{name}"' for name in group)
            col_defs.append(f"UNIQUE ({quoted})")

        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    " + ",\n    ".join(col_defs) + "\n)"

    async def create_schema(self) -> None:
        """Create table if not exists."""
        await self.db.adapter.execute(self.create_table_sql())

    async def sync_schema(self) -> None:
        """Add any column defined in configure() that the stored table lacks.

        Safe to call on every startup: existing columns are skipped.
        """
        rows = await self.db.adapter.fetch_all(f"PRAGMA table_info({self.name})")
        existing = {row["name"] for row in rows}
        for col in self.columns.values():
            if col.primary_key or col.name in existing:
                continue
            await self.db.adapter.execute(
                f"ALTER TABLE {self.name} ADD COLUMN {col.to_sql()}"
            )

    # -------------------------------------------------------------------------
    # JSON Encoding/Decoding
    # -------------------------------------------------------------------------

    def _encode_json_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        result = dict(data)
        for col_name in self.columns.json_columns():
            if col_name in result and result[col_name] is not None:
                result[col_name] = json.dumps(result[col_name])
        return result

    def _decode_json_fields(self, row: dict[str, Any]) -> dict[str, Any]:
        result = dict(row)
        for col_name in self.columns.json_columns():
            if col_name in result and result[col_name] is not None:
                result[col_name] = json.loads(result[col_name])
        return result

    def _decode_rows(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [self._decode_json_fields(row) for row in rows]

    # -------------------------------------------------------------------------
    # CRUD Operations
    # -------------------------------------------------------------------------

    async def insert(self, data: dict[str, Any]) -> int:
        encoded = self._encode_json_fields(data)
        return await self.db.adapter.insert(self.name, encoded)

    async def select(
        self,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self.db.adapter.select(self.name, columns, where, order_by, limit)
        return self._decode_rows(rows)

    async def select_one(
        self,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        row = await self.db.adapter.select_one(self.name, columns, where)
        return self._decode_json_fields(row) if row else None

    async def update(self, values: dict[str, Any], where: dict[str, Any]) -> int:
        encoded = self._encode_json_fields(values)
        return await self.db.adapter.update(self.name, encoded, where)

    # -------------------------------------------------------------------------
    # Raw Query
    # -------------------------------------------------------------------------

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        row = await self.db.adapter.fetch_one(query, params)
        return self._decode_json_fields(row) if row else None

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        rows = await self.db.adapter.fetch_all(query, params)
        return self._decode_rows(rows)

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        return await self.db.adapter.execute(query, params)

    async def execute_many(self, query: str, params_list: list[dict[str, Any]]) -> int:
        return await self.db.adapter.execute_many(query, params_list)


__all__ = ["Table"]
