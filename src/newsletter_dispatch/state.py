# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Campaign status transitions and the per-campaign run lock.

Lifecycle::

    draft / scheduled ──► sending ──► sent | partially_sent | failed
                             ▲                     │
                             └── partially_sent, failed (resume)

``sent`` is terminal. A ``sending`` campaign can be restarted only once its
lock has expired, which is how a crashed run is recovered.

Starting a run is a single conditional UPDATE that checks the status and
the lock and takes the lock at the same time, so two concurrent starts can
never both succeed. Each run holds the lock under its own owner token;
refreshing it, counting batches and finishing the run only apply while that
token still holds the lock, so a run whose lock expired and was taken over
cannot touch the campaign any more.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from typing import Any

from .entities.campaign import BatchInfo, CampaignStatus
from .exceptions import (
    CampaignLockedError,
    CampaignNotFoundError,
    InvalidTransitionError,
    LockLostError,
)
from .logger import get_logger
from .newsletter_db import NewsletterDb
from .timeutils import utc_now_iso

STARTABLE_STATUSES = frozenset(
    {
        CampaignStatus.DRAFT.value,
        CampaignStatus.SCHEDULED.value,
        CampaignStatus.PARTIALLY_SENT.value,
        CampaignStatus.FAILED.value,
        CampaignStatus.SENDING.value,
    }
)


def final_status(successful: int, failed: int) -> CampaignStatus:
    """Terminal status of a run from its own counts."""
    if failed == 0:
        return CampaignStatus.SENT
    if successful == 0:
        return CampaignStatus.FAILED
    return CampaignStatus.PARTIALLY_SENT


class CampaignStateMachine:
    """Owns campaign status, counters, batch metadata and the run lock.

    Attributes:
        db: Newsletter database.
        lock_ttl_seconds: Lifetime of the lock between refreshes.
    """

    def __init__(
        self,
        db: NewsletterDb,
        lock_ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.db = db
        self.lock_ttl_seconds = int(lock_ttl_seconds)
        self._clock = clock
        self.logger = logger or get_logger("state")

    def _lock_deadline(self) -> int:
        return int(self._clock()) + self.lock_ttl_seconds

    async def start_run(self, campaign_id: str, target_count: int) -> dict[str, Any]:
        """Move the campaign to ``sending`` and take the run lock.

        ``recipient_count`` becomes the counters accumulated by earlier runs
        plus ``target_count``, so progress stays within [0, 1] across resumes.

        Args:
            campaign_id: Campaign to start.
            target_count: Number of recipients of this run (non-zero).

        Returns:
            The campaign row after the transition; ``lock_owner`` is the token
            the caller passes to every later call for this run.

        Raises:
            CampaignNotFoundError: If the campaign does not exist.
            InvalidTransitionError: If the campaign is ``sent``.
            CampaignLockedError: If another run holds the lock.
        """
        now_ts = int(self._clock())
        acquired = await self.db.campaigns.try_start_run(
            campaign_id,
            allowed_statuses=STARTABLE_STATUSES,
            target_count=target_count,
            started_at=utc_now_iso(),
            owner=uuid.uuid4().hex,
            lock_until=now_ts + self.lock_ttl_seconds,
            now_ts=now_ts,
        )
        campaign = await self.db.campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        if acquired:
            self.logger.info(
                "Campaign %s: run started for %d recipients (lock until %s)",
                campaign_id,
                target_count,
                campaign.get("locked_until"),
            )
            return campaign

        status = campaign.get("status")
        if status not in STARTABLE_STATUSES:
            raise InvalidTransitionError(campaign_id, status)
        raise CampaignLockedError(campaign_id, status, campaign.get("locked_until"))

    async def refresh_lock(self, campaign_id: str, owner: str) -> None:
        """Extend the run lock by one TTL from now.

        Raises:
            LockLostError: If another run has taken the lock over.
        """
        if not await self.db.campaigns.refresh_lock(campaign_id, owner, self._lock_deadline()):
            raise LockLostError(campaign_id)

    async def record_batch(self, campaign_id: str, successful: int, failed: int, *, owner: str) -> None:
        """Add a finished batch to the counters and refresh the lock.

        Raises:
            LockLostError: If another run has taken the lock over.
        """
        recorded = await self.db.campaigns.record_batch(
            campaign_id, owner, successful, failed, lock_until=self._lock_deadline()
        )
        if not recorded:
            raise LockLostError(campaign_id)

    async def finish_run(
        self,
        campaign_id: str,
        *,
        owner: str,
        successful: int,
        failed: int,
        total_batches: int,
        batch_size: int,
        processing_time_ms: int | None = None,
    ) -> CampaignStatus:
        """Persist the run's terminal status and batch metadata, then release the lock.

        Raises:
            LockLostError: If another run has taken the lock over.
        """
        status = final_status(successful, failed)
        completed_at = utc_now_iso()
        batch_info = BatchInfo(
            total_batches=total_batches,
            batch_size=batch_size,
            completed_at=completed_at,
            processing_time_ms=processing_time_ms,
        )
        finished = await self.db.campaigns.finish_run(
            campaign_id,
            owner,
            status=status.value,
            completed_at=completed_at,
            batch_info=batch_info.model_dump(),
            sent_date=completed_at if status is CampaignStatus.SENT else None,
        )
        if not finished:
            raise LockLostError(campaign_id)
        return status

    async def fail_run(self, campaign_id: str, error: str, *, owner: str) -> bool:
        """Mark the campaign failed, append ``error`` to its log and release the lock.

        Returns:
            False, with the campaign untouched, if ``owner`` lost the lock.
        """
        failed = await self.db.campaigns.fail_run(campaign_id, error, owner=owner)
        if not failed:
            self.logger.warning("Campaign %s: lock lost, not recording failure: %s", campaign_id, error)
        return failed


__all__ = ["CampaignStateMachine", "STARTABLE_STATUSES", "final_status"]
