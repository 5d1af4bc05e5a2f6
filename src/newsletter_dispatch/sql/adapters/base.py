# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base adapter class for async database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence


class DbAdapter(ABC):
    """Abstract base class for async database adapters.

    All queries use :name placeholders. The CRUD helpers (insert, select,
    select_one, update) build their SQL here so that concrete
    adapters only implement the raw execution primitives.
    """

    def pk_column(self, name: str) -> str:
        """Return SQL definition for an autoincrement primary key column."""
        return f'"{name}" INTEGER PRIMARY KEY AUTOINCREMENT'

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
        """Execute query multiple times with different params (batch insert)."""
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

    # -------------------------------------------------------------------------
    # CRUD helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _where_clause(where: dict[str, Any] | None, prefix: str = "w_") -> tuple[str, dict[str, Any]]:
        if not where:
            return "", {}
        parts = []
        params: dict[str, Any] = {}
        for key, value in where.items():
            if value is None:
                parts.append(f"{key} IS NULL")
            else:
                parts.append(f"{key} = :{prefix}{key}")
                params[f"{prefix}{key}"] = value
        return " WHERE " + " AND ".join(parts), params

    async def insert(self, table: str, data: dict[str, Any]) -> int:
        columns = list(data.keys())
        col_list = ", ".join(columns)
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
        col_list = ", ".join(columns) if columns else "*"
        where_sql, params = self._where_clause(where)
        query = f"SELECT {col_list} FROM {table}{where_sql}"
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
        set_sql = ", ".join(f"{c} = :{c}" for c in values)
        where_sql, params = self._where_clause(where)
        return await self.execute(f"UPDATE {table} SET {set_sql}{where_sql}", {**values, **params})
