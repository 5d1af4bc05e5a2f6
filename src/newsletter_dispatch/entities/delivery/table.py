# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Deliveries table manager: one record per (campaign, recipient)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ...sql import Integer, String, Table, Timestamp

DELIVERY_STATUSES = ("pending", "sent", "failed")


class DeliveriesTable(Table):
    """Deliveries table: per-recipient outcome of a campaign.

    Fields:
    - id: Internal autoincrement key
    - campaign_id, email: Natural key, UNIQUE together
    - status: pending, sent or failed
    - attempts: Number of recorded send attempts
    - last_attempt_at: Time of the last attempt
    - sent_at, message_id: Set on success
    - failure_reason, error: Set on failure, cleared on success

    Every write goes through an upsert on (campaign_id, email), so repeated
    sends to the same address update the existing row.
    """

    name = "deliveries"
    unique_together = (("campaign_id", "email"),)

    def configure(self) -> None:
        c = self.columns
        c.column("id", Integer, primary_key=True)
        c.column("campaign_id", String, nullable=False)
        c.column("email", String, nullable=False)
        c.column("status", String, nullable=False, default="pending")
        c.column("attempts", Integer, nullable=False, default=0)
        c.column("last_attempt_at", String)
        c.column("sent_at", String)
        c.column("message_id", String)
        c.column("failure_reason", String)
        c.column("error", String)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")
        c.column("updated_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def mark_pending(self, campaign_id: str, emails: Sequence[str]) -> int:
        """Ensure a pending record exists for each email before it is attempted.

        Missing rows are created with zero attempts; existing failed or pending
        rows are moved to pending. Sent rows are left untouched.
        """
        return await self.execute_many(
            """
            INSERT INTO deliveries (campaign_id, email, status, attempts)
            VALUES (:campaign_id, :email, 'pending', 0)
            ON CONFLICT (campaign_id, email) DO UPDATE SET
                status = 'pending',
                updated_at = CURRENT_TIMESTAMP
            WHERE deliveries.status != 'sent'
            """,
            [{"campaign_id": campaign_id, "email": email} for email in emails],
        )

    async def record_sent(
        self, campaign_id: str, email: str, *, message_id: str | None, attempted_at: str
    ) -> None:
        """Upsert a successful attempt, clearing any earlier failure."""
        await self._record_attempt(
            {
                "campaign_id": campaign_id,
                "email": email,
                "status": "sent",
                "attempted_at": attempted_at,
                "sent_at": attempted_at,
                "message_id": message_id,
                "failure_reason": None,
                "error": None,
            }
        )

    async def record_failed(
        self,
        campaign_id: str,
        email: str,
        *,
        failure_reason: str,
        error: str | None,
        attempted_at: str,
    ) -> None:
        """Upsert a failed attempt."""
        await self._record_attempt(
            {
                "campaign_id": campaign_id,
                "email": email,
                "status": "failed",
                "attempted_at": attempted_at,
                "sent_at": None,
                "message_id": None,
                "failure_reason": failure_reason,
                "error": error,
            }
        )

    async def _record_attempt(self, params: dict[str, Any]) -> None:
        await self.execute(
            """
            INSERT INTO deliveries (
                campaign_id, email, status, attempts, last_attempt_at,
                sent_at, message_id, failure_reason, error
            ) VALUES (
                :campaign_id, :email, :status, 1, :attempted_at,
                :sent_at, :message_id, :failure_reason, :error
            )
            ON CONFLICT (campaign_id, email) DO UPDATE SET
                status = excluded.status,
                attempts = deliveries.attempts + 1,
                last_attempt_at = excluded.last_attempt_at,
                sent_at = excluded.sent_at,
                message_id = excluded.message_id,
                failure_reason = excluded.failure_reason,
                error = excluded.error,
                updated_at = CURRENT_TIMESTAMP
            """,
            params,
        )

    async def get(self, campaign_id: str, email: str) -> dict[str, Any] | None:
        return await self.select_one(where={"campaign_id": campaign_id, "email": email})

    async def status_by_email(self, campaign_id: str) -> dict[str, str]:
        rows = await self.select(columns=["email", "status"], where={"campaign_id": campaign_id})
        return {row["email"]: row["status"] for row in rows}

    async def stats(self, campaign_id: str) -> dict[str, int]:
        """Count records per status. Always returns every status key plus total."""
        rows = await self.fetch_all(
            "SELECT status, COUNT(*) AS cnt FROM deliveries WHERE campaign_id = :campaign_id GROUP BY status",
            {"campaign_id": campaign_id},
        )
        counts = {status: 0 for status in DELIVERY_STATUSES}
        for row in rows:
            counts[row["status"]] = int(row["cnt"])
        counts["total"] = sum(counts[s] for s in DELIVERY_STATUSES)
        return counts

    async def list_for_campaign(self, campaign_id: str) -> list[dict[str, Any]]:
        return await self.select(where={"campaign_id": campaign_id}, order_by="id ASC")

    async def latest(self, campaign_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recently touched records, newest first."""
        return await self.select(
            where={"campaign_id": campaign_id},
            order_by="updated_at DESC, id DESC",
            limit=limit,
        )

    async def count_sent_since(self, since_iso: str) -> int:
        """Count successful deliveries across all campaigns since a timestamp."""
        row = await self.db.adapter.fetch_one(
            "SELECT COUNT(*) AS cnt FROM deliveries WHERE status = 'sent' AND sent_at >= :since",
            {"since": since_iso},
        )
        return int(row["cnt"]) if row else 0


__all__ = ["DELIVERY_STATUSES", "DeliveriesTable"]
