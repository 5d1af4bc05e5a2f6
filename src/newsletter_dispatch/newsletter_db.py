# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Newsletter database manager with pre-registered tables.

Example:
    db = NewsletterDb("/data/newsletter.db")
    await db.init_db()

    await db.campaigns.add({"id": "nl-1", "subject": "Hello", "content": "<p>Hi</p>"})
    await db.subscribers.add({"email": "reader@example.com"})
    stats = await db.deliveries.stats("nl-1")
"""

from __future__ import annotations

from .entities import CampaignsTable, DeliveriesTable, SubscribersTable
from .sql import SqlDb


class NewsletterDb(SqlDb):
    """SqlDb with the campaigns, subscribers and deliveries tables registered."""

    def __init__(self, connection_string: str = "/data/newsletter.db"):
        """Initialize the newsletter database.

        Args:
            connection_string: SQLite path, optionally prefixed with "sqlite:".
        """
        super().__init__(connection_string)
        self.db_path = connection_string

        self.add_table(CampaignsTable)
        self.add_table(SubscribersTable)
        self.add_table(DeliveriesTable)

    @property
    def campaigns(self) -> CampaignsTable:
        return self.table("campaigns")  # type: ignore[return-value]

    @property
    def subscribers(self) -> SubscribersTable:
        return self.table("subscribers")  # type: ignore[return-value]

    @property
    def deliveries(self) -> DeliveriesTable:
        return self.table("deliveries")  # type: ignore[return-value]

    async def init_db(self) -> None:
        """Connect, create missing tables, then add columns missing from older databases."""
        await self.connect()
        await self.check_structure()

        await self.campaigns.sync_schema()
        await self.subscribers.sync_schema()
        await self.deliveries.sync_schema()


__all__ = ["NewsletterDb"]
