# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SqlDb: adapter holder with table registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .adapters import DbAdapter, get_adapter

if TYPE_CHECKING:
    from .table import Table


class SqlDb:
    """Database manager owning an adapter and a registry of tables.

    Example:
        db = SqlDb("/data/newsletter.db")
        db.add_table(CampaignsTable)
        await db.connect()
        await db.check_structure()
        campaign = await db.table("campaigns").select_one(where={"id": "nl-1"})
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
        """Return a registered table manager by name.

        Raises:
            KeyError: If no table with that name was registered.
        """
        try:
            return self.tables[name]
        except KeyError:
            raise KeyError(f"Table '{name}' is not registered") from None

    async def connect(self) -> None:
        await self.adapter.connect()

    async def close(self) -> None:
        await self.adapter.close()

    async def check_structure(self) -> None:
        """Create every registered table that does not exist yet."""
        for table in self.tables.values():
            await table.create_schema()


__all__ = ["SqlDb"]
