# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Recipient resolution for a campaign run.

Given a campaign and a recovery mode, compute who receives the next run:

- ``failed``: eligible recipients whose record is failed or pending
- ``unsent``: eligible recipients with no record at all
- ``all``: eligible recipients without a sent record

``failed`` and ``unsent`` are disjoint and together equal ``all``. Results
keep the eligible-list order (subscription time, then id).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .entities.campaign import CampaignType, ResumeType
from .exceptions import CampaignNotFoundError, InvalidResumeTypeError
from .newsletter_db import NewsletterDb


@dataclass(frozen=True)
class Recipient:
    email: str
    unsubscribe_token: str | None = None
    subscriber_id: str | None = None


def parse_resume_type(value: ResumeType | str | None) -> ResumeType:
    """Normalize a recovery mode; ``None`` means ``all``.

    Raises:
        InvalidResumeTypeError: For anything other than failed, unsent or all.
    """
    if value is None:
        return ResumeType.ALL
    if isinstance(value, ResumeType):
        return value
    try:
        return ResumeType(str(value).strip().lower())
    except ValueError:
        raise InvalidResumeTypeError(value) from None


class RecipientResolver:
    """Computes the recipient set of a run from subscribers and delivery records."""

    def __init__(self, db: NewsletterDb):
        self.db = db

    async def get_campaign(self, campaign_id: str) -> dict[str, Any]:
        campaign = await self.db.campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        return campaign

    async def eligible(self, campaign: dict[str, Any]) -> list[Recipient]:
        """Active subscribers; weekly digests also require the weekly_digest preference."""
        rows = await self.db.subscribers.list_active()
        digest_only = campaign.get("type") == CampaignType.WEEKLY_DIGEST.value
        recipients = []
        for row in rows:
            if digest_only and not (row.get("preferences") or {}).get("weekly_digest"):
                continue
            recipients.append(
                Recipient(
                    email=row["email"],
                    unsubscribe_token=row.get("unsubscribe_token"),
                    subscriber_id=row.get("id"),
                )
            )
        return recipients

    async def resolve(self, campaign_id: str, mode: ResumeType | str | None = ResumeType.ALL) -> list[Recipient]:
        """Return the recipients of the next run for ``mode``.

        Args:
            campaign_id: Campaign to resolve for.
            mode: failed, unsent or all.

        Returns:
            Recipients in eligible-list order. May be empty.

        Raises:
            CampaignNotFoundError: If the campaign does not exist.
            InvalidResumeTypeError: If ``mode`` is not a known recovery mode.
        """
        resume_type = parse_resume_type(mode)
        campaign = await self.get_campaign(campaign_id)
        eligible = await self.eligible(campaign)
        statuses = await self.db.deliveries.status_by_email(campaign_id)

        match resume_type:
            case ResumeType.FAILED:
                return [r for r in eligible if statuses.get(r.email) in ("failed", "pending")]
            case ResumeType.UNSENT:
                return [r for r in eligible if r.email not in statuses]
            case ResumeType.ALL:
                return [r for r in eligible if statuses.get(r.email) != "sent"]


__all__ = ["Recipient", "RecipientResolver", "parse_resume_type"]
