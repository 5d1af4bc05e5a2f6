# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Read-only views of a campaign's delivery state.

Nothing here writes: progress can be polled while a run is in flight and
never interferes with it.
"""

from __future__ import annotations

import csv
import io
from typing import Any

from .newsletter_db import NewsletterDb
from .resolver import RecipientResolver

LATEST_RECORDS_LIMIT = 50


class ProgressReporter:
    """Progress, delivery breakdown and CSV export for a campaign."""

    def __init__(self, db: NewsletterDb, resolver: RecipientResolver | None = None):
        self.db = db
        self.resolver = resolver or RecipientResolver(db)

    async def get_progress(self, campaign_id: str) -> dict[str, Any]:
        """Counters and status as stored on the campaign.

        Returns:
            Dict with status, successful_sends, failed_sends, recipient_count,
            batch_info, last_sent_at (the campaign's sent date) and last_error
            (the newest entry of the error log, or None).

        Raises:
            CampaignNotFoundError: If the campaign does not exist.
        """
        campaign = await self.resolver.get_campaign(campaign_id)
        errors = campaign.get("errors") or []
        return {
            "status": campaign["status"],
            "successful_sends": int(campaign.get("successful_sends") or 0),
            "failed_sends": int(campaign.get("failed_sends") or 0),
            "recipient_count": int(campaign.get("recipient_count") or 0),
            "batch_info": campaign.get("batch_info"),
            "last_sent_at": campaign.get("sent_date"),
            "last_error": errors[-1] if errors else None,
        }

    async def delivery_status(self, campaign_id: str) -> dict[str, Any]:
        """Per-recipient breakdown over the current eligible audience.

        Returns:
            Dict with ``summary`` (total, sent, failed, pending, not_attempted),
            ``recent`` (latest delivery records), ``failed_emails`` (record
            details) and ``not_attempted_emails`` (plain addresses).
        """
        campaign = await self.resolver.get_campaign(campaign_id)
        eligible = await self.resolver.eligible(campaign)
        records = {row["email"]: row for row in await self.db.deliveries.list_for_campaign(campaign_id)}

        summary = {"total": len(eligible), "sent": 0, "failed": 0, "pending": 0, "not_attempted": 0}
        failed_emails: list[dict[str, Any]] = []
        not_attempted: list[str] = []
        for recipient in eligible:
            record = records.get(recipient.email)
            if record is None:
                summary["not_attempted"] += 1
                not_attempted.append(recipient.email)
                continue
            status = record["status"]
            summary[status] = summary.get(status, 0) + 1
            if status == "failed":
                failed_emails.append(
                    {
                        "email": recipient.email,
                        "attempts": record["attempts"],
                        "failure_reason": record.get("failure_reason"),
                        "error": record.get("error"),
                        "last_attempt_at": record.get("last_attempt_at"),
                    }
                )

        return {
            "campaign_id": campaign_id,
            "status": campaign["status"],
            "summary": summary,
            "recent": await self.db.deliveries.latest(campaign_id, LATEST_RECORDS_LIMIT),
            "failed_emails": failed_emails,
            "not_attempted_emails": not_attempted,
        }

    async def export_csv(self, campaign_id: str) -> str:
        """CSV of recipients still to reach: failed first, then never attempted."""
        report = await self.delivery_status(campaign_id)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["email", "status", "attempts", "error"])
        for item in report["failed_emails"]:
            writer.writerow([item["email"], "failed", item["attempts"], item.get("error") or ""])
        for email in report["not_attempted_emails"]:
            writer.writerow([email, "not_attempted", 0, ""])
        return buffer.getvalue()


__all__ = ["LATEST_RECORDS_LIMIT", "ProgressReporter"]
