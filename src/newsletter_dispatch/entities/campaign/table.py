# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Campaigns table manager: status, counters, batch metadata and run lock."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ...sql import Integer, String, Table, Timestamp
from .schema import CampaignCreate, CampaignStatus


class CampaignsTable(Table):
    """Campaigns table: one row per newsletter.

    Fields:
    - id: Campaign identifier
    - subject, content, title, type: Newsletter data (content is HTML)
    - status: See CampaignStatus
    - recipient_count: Size of the target population
    - successful_sends, failed_sends: Cumulative counters, only incremented
    - batch_info: JSON {total_batches, batch_size, completed_at, processing_time_ms}
    - sent_date: Set only when a run ends with status 'sent'
    - sending_started, sending_completed: Timestamps of the last run
    - errors: JSON list of error messages, oldest first
    - lock_owner: Token of the run holding the lock
    - locked_until: Epoch seconds; the owning run holds the campaign while this is in the future
    """

    name = "campaigns"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("title", String)
        c.column("subject", String, nullable=False)
        c.column("content", String, nullable=False)
        c.column("type", String, nullable=False, default="manual")
        c.column("status", String, nullable=False, default="draft")
        c.column("recipient_count", Integer, nullable=False, default=0)
        c.column("successful_sends", Integer, nullable=False, default=0)
        c.column("failed_sends", Integer, nullable=False, default=0)
        c.column("batch_info", String, json_encoded=True)
        c.column("sent_date", String)
        c.column("sending_started", String)
        c.column("sending_completed", String)
        c.column("errors", String, json_encoded=True)
        c.column("lock_owner", String)
        c.column("locked_until", Integer)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")
        c.column("updated_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def add(self, campaign: dict[str, Any]) -> dict[str, Any]:
        """Validate and insert a new campaign. Returns the stored fields."""
        data = CampaignCreate.model_validate(campaign).model_dump()
        data["errors"] = []
        await self.insert(data)
        return data

    async def get(self, campaign_id: str) -> dict[str, Any] | None:
        return await self.select_one(where={"id": campaign_id})

    async def try_start_run(
        self,
        campaign_id: str,
        *,
        allowed_statuses: Iterable[str],
        target_count: int,
        started_at: str,
        owner: str,
        lock_until: int,
        now_ts: int,
    ) -> bool:
        """Move the campaign to 'sending' and take its lock in one statement.

        The update matches only when the current status is in
        ``allowed_statuses`` and no unexpired lock is held. ``recipient_count``
        becomes the counters already accumulated plus ``target_count``.

        Returns:
            True if ``owner`` now owns the run.
        """
        statuses = list(allowed_statuses)
        params: dict[str, Any] = {
            "id": campaign_id,
            "sending": CampaignStatus.SENDING.value,
            "started_at": started_at,
            "target_count": int(target_count),
            "owner": owner,
            "lock_until": int(lock_until),
            "now_ts": int(now_ts),
        }
        status_params = []
        for idx, value in enumerate(statuses):
            params[f"s{idx}"] = value
            status_params.append(f":s{idx}")
        rowcount = await self.execute(
            f"""
            UPDATE campaigns SET
                status = :sending,
                sending_started = :started_at,
                sending_completed = NULL,
                recipient_count = successful_sends + failed_sends + :target_count,
                lock_owner = :owner,
                locked_until = :lock_until,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
              AND status IN ({", ".join(status_params)})
              AND (locked_until IS NULL OR locked_until <= :now_ts)
            """,
            params,
        )
        return rowcount == 1

    async def refresh_lock(self, campaign_id: str, owner: str, lock_until: int) -> bool:
        """Push the lock deadline forward. False if ``owner`` no longer holds it."""
        rowcount = await self.execute(
            """
            UPDATE campaigns SET locked_until = :lock_until
            WHERE id = :id AND lock_owner = :owner
            """,
            {"id": campaign_id, "owner": owner, "lock_until": int(lock_until)},
        )
        return rowcount == 1

    async def record_batch(
        self, campaign_id: str, owner: str, successful: int, failed: int, lock_until: int
    ) -> bool:
        """Add one batch's outcome to the counters and extend the run lock.

        Returns:
            False, with nothing written, if ``owner`` no longer holds the lock.
        """
        rowcount = await self.execute(
            """
            UPDATE campaigns SET
                successful_sends = successful_sends + :successful,
                failed_sends = failed_sends + :failed,
                locked_until = :lock_until,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND lock_owner = :owner
            """,
            {
                "id": campaign_id,
                "owner": owner,
                "successful": max(0, int(successful)),
                "failed": max(0, int(failed)),
                "lock_until": int(lock_until),
            },
        )
        return rowcount == 1

    async def finish_run(
        self,
        campaign_id: str,
        owner: str,
        *,
        status: str,
        completed_at: str,
        batch_info: dict[str, Any],
        sent_date: str | None = None,
    ) -> bool:
        """Persist the terminal status of a run and release the lock.

        ``sent_date`` is only overwritten when given.

        Returns:
            False, with nothing written, if ``owner`` no longer holds the lock.
        """
        encoded = self._encode_json_fields({"batch_info": batch_info})
        rowcount = await self.execute(
            """
            UPDATE campaigns SET
                status = :status,
                sending_completed = :completed_at,
                sent_date = COALESCE(:sent_date, sent_date),
                batch_info = :batch_info,
                lock_owner = NULL,
                locked_until = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND lock_owner = :owner
            """,
            {
                "id": campaign_id,
                "owner": owner,
                "status": status,
                "completed_at": completed_at,
                "sent_date": sent_date,
                "batch_info": encoded["batch_info"],
            },
        )
        return rowcount == 1

    async def fail_run(self, campaign_id: str, error: str, owner: str | None = None) -> bool:
        """Mark the campaign failed, append ``error`` to its log and release the lock.

        With ``owner`` the update only applies while that run holds the lock.
        """
        where: dict[str, Any] = {"id": campaign_id}
        if owner is not None:
            where["lock_owner"] = owner
        row = await self.select_one(columns=["errors"], where=where)
        if row is None:
            return False
        errors = list(row.get("errors") or [])
        errors.append(error)
        rowcount = await self.update(
            {
                "status": CampaignStatus.FAILED.value,
                "errors": errors,
                "lock_owner": None,
                "locked_until": None,
            },
            where,
        )
        return rowcount == 1


__all__ = ["CampaignsTable"]
