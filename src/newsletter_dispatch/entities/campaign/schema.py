# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic schemas and enums for the campaign entity."""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class CampaignStatus(str, Enum):
    """Lifecycle status of a newsletter campaign.

    Attributes:
        DRAFT: Created, never sent.
        SCHEDULED: Waiting for a scheduled send.
        SENDING: A run is in progress (or crashed while holding its lock).
        SENT: Every recipient of the last run was delivered. Terminal.
        PARTIALLY_SENT: The last run had both successes and failures.
        FAILED: The last run had no successes, or aborted.
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    PARTIALLY_SENT = "partially_sent"
    FAILED = "failed"


class CampaignType(str, Enum):
    WEEKLY_DIGEST = "weekly-digest"
    MANUAL = "manual"
    ANNOUNCEMENT = "announcement"


class ResumeType(str, Enum):
    """Recovery strategy used to pick the recipients of a run.

    Attributes:
        FAILED: Recipients whose record is failed or pending.
        UNSENT: Eligible recipients with no record at all.
        ALL: Eligible recipients without a sent record.
    """

    FAILED = "failed"
    UNSENT = "unsent"
    ALL = "all"


class CampaignCreate(BaseModel):
    """Payload for registering a campaign with the delivery engine."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    id: Annotated[str, Field(min_length=1, max_length=128)]
    subject: Annotated[str, Field(min_length=1)]
    content: Annotated[str, Field(description="HTML body")]
    title: str | None = None
    type: CampaignType = CampaignType.MANUAL
    status: CampaignStatus = CampaignStatus.DRAFT


class BatchInfo(BaseModel):
    """Batch metadata stored on the campaign at the end of a run."""

    total_batches: int = 0
    batch_size: int = 0
    completed_at: str | None = None
    processing_time_ms: int | None = None


__all__ = [
    "BatchInfo",
    "CampaignCreate",
    "CampaignStatus",
    "CampaignType",
    "ResumeType",
]
