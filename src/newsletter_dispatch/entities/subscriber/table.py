# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Subscribers table manager (read-mostly source of recipients)."""

from __future__ import annotations

import secrets
import uuid
from typing import Any

from ...sql import Boolean, String, Table, Timestamp


class SubscribersTable(Table):
    """Subscribers table: newsletter audience.

    Fields:
    - id: Subscriber identifier
    - email: Lowercased address, unique
    - is_active: 1 while subscribed
    - unsubscribe_token: Opaque token embedded in the unsubscribe link
    - preferences: JSON, e.g. {"weekly_digest": true}
    - subscribed_at: Subscription timestamp, used for the stable recipient order
    """

    name = "subscribers"
    unique_together = (("email",),)

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("email", String, nullable=False)
        c.column("is_active", Boolean, nullable=False, default=1)
        c.column("unsubscribe_token", String)
        c.column("preferences", String, json_encoded=True)
        c.column("subscribed_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def add(self, subscriber: dict[str, Any]) -> dict[str, Any]:
        """Insert a subscriber, filling id and unsubscribe token when absent."""
        email = str(subscriber["email"]).strip().lower()
        record: dict[str, Any] = {
            "id": subscriber.get("id") or uuid.uuid4().hex,
            "email": email,
            "is_active": 1 if subscriber.get("is_active", True) else 0,
            "unsubscribe_token": subscriber.get("unsubscribe_token") or secrets.token_urlsafe(24),
            "preferences": subscriber.get("preferences") or {"weekly_digest": True},
        }
        if subscriber.get("subscribed_at"):
            record["subscribed_at"] = subscriber["subscribed_at"]
        await self.insert(record)
        return record

    async def get_by_email(self, email: str) -> dict[str, Any] | None:
        return await self.select_one(where={"email": email.strip().lower()})

    async def set_active(self, email: str, active: bool) -> bool:
        updated = await self.update(
            {"is_active": 1 if active else 0}, {"email": email.strip().lower()}
        )
        return updated > 0

    async def list_active(self) -> list[dict[str, Any]]:
        """Active subscribers ordered by subscription time, then id."""
        return await self.select(
            where={"is_active": 1}, order_by="subscribed_at ASC, id ASC"
        )


__all__ = ["SubscribersTable"]
