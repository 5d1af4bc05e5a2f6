# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Batch dispatcher: partition, pace, send and record a campaign run.

A run processes its recipients in contiguous batches of
``DispatchConfig.batch_size``, strictly in order:

1. The campaign moves to ``sending`` and the run lock is taken.
2. For each batch, recipients get a pending record, then each one is
   personalized, sent and recorded as sent or failed. The run lock is
   refreshed before every send. The dispatcher waits
   ``inter_item_delay_ms`` between sends and ``batch_delay_ms`` between
   batches, with no pause after the last item or the last batch.
3. After every batch the campaign counters are incremented.
4. The run ends with ``sent``, ``partially_sent`` or ``failed`` based on
   this run's own counts.

An exception outside the per-recipient result path marks the campaign
failed, appends the error to its log and is re-raised as DispatchError.
A run that finds its lock taken over stops without writing to the campaign.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .config import DispatchConfig
from .entities.campaign import CampaignStatus
from .exceptions import DispatchError, LockLostError
from .logger import get_logger
from .newsletter_db import NewsletterDb
from .prometheus import DispatchMetrics
from .resolver import Recipient
from .state import CampaignStateMachine
from .timeutils import utc_now_iso
from .transport import Delivered, MailTransport, Rejected, add_unsubscribe_link, strip_html

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous chunks of ``size``; the last one may be shorter."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


@dataclass
class BatchOutcome:
    index: int
    successful: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Counts of one run. ``status`` is None when nothing was sent."""

    successful: int = 0
    failed: int = 0
    total: int = 0
    batches: int = 0
    status: str | None = None

    def summary(self) -> dict[str, int]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total": self.total,
            "batches": self.batches,
        }


class BatchDispatcher:
    """Sends a campaign to a resolved recipient list.

    Attributes:
        db: Newsletter database.
        transport: MailTransport used for every send.
        config: Pacing of the run.
        state: Campaign state machine owning status, counters and lock.
        metrics: Prometheus metrics.
    """

    def __init__(
        self,
        db: NewsletterDb,
        transport: MailTransport,
        config: DispatchConfig,
        *,
        state: CampaignStateMachine | None = None,
        metrics: DispatchMetrics | None = None,
        logger=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        site_url: str = "http://localhost:3000",
        site_name: str = "our newsletter",
    ):
        """Initialize the dispatcher.

        Args:
            db: Newsletter database.
            transport: Object with ``async send(to, subject, html, text)``.
            config: Batch size and delays.
            state: State machine; built from ``db`` and ``config.lock_ttl_seconds`` if omitted.
            metrics: Prometheus metrics; a private set is created if omitted.
            logger: Custom logger. If None, uses the package logger.
            sleep: Awaitable used for both pauses, injectable in tests.
            site_url: Base URL for unsubscribe links.
            site_name: Name shown in the unsubscribe footer.
        """
        self.db = db
        self.transport = transport
        self.config = config
        self.state = state or CampaignStateMachine(db, lock_ttl_seconds=config.lock_ttl_seconds)
        self.metrics = metrics or DispatchMetrics()
        self.logger = logger or get_logger("dispatcher")
        self._sleep = sleep
        self.site_url = site_url
        self.site_name = site_name

    async def dispatch(self, campaign_id: str, recipients: Sequence[Recipient]) -> RunResult:
        """Run a campaign over ``recipients``.

        An empty list returns a zero RunResult without touching the campaign.
        The run lock is refreshed before every send, so it only expires when
        the process stops making progress.

        Raises:
            CampaignNotFoundError, InvalidTransitionError, CampaignLockedError:
                If the run cannot start. The campaign is left unchanged.
            DispatchError: If the run aborted. The campaign is marked failed,
                unless another run had taken the lock over.
        """
        if not recipients:
            return RunResult()

        campaign = await self.state.start_run(campaign_id, len(recipients))
        owner = campaign["lock_owner"]
        batches = partition(recipients, self.config.batch_size)
        result = RunResult(total=len(recipients), batches=len(batches))
        started = time.monotonic()
        run_status = CampaignStatus.FAILED.value
        self.metrics.run_started()

        try:
            text = strip_html(campaign["content"])
            for index, batch in enumerate(batches, start=1):
                outcome = await self._send_batch(campaign, text, index, len(batches), batch)
                result.successful += len(outcome.successful)
                result.failed += len(outcome.failed)
                await self.state.record_batch(
                    campaign_id, len(outcome.successful), len(outcome.failed), owner=owner
                )
                self.metrics.inc_batches(campaign_id)
                self.logger.info(
                    "Campaign %s: batch %d/%d done (%d sent, %d failed)",
                    campaign_id,
                    index,
                    len(batches),
                    len(outcome.successful),
                    len(outcome.failed),
                )
                if index < len(batches):
                    await self._sleep(self.config.batch_delay_ms / 1000)

            status = await self.state.finish_run(
                campaign_id,
                owner=owner,
                successful=result.successful,
                failed=result.failed,
                total_batches=len(batches),
                batch_size=self.config.batch_size,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )
            run_status = status.value
        except LockLostError as exc:
            run_status = "lock_lost"
            self.logger.error("Campaign %s: run stopped, %s", campaign_id, exc)
            raise DispatchError(campaign_id, f"Batch send failed: {exc}") from exc
        except Exception as exc:
            self.logger.exception("Campaign %s: run aborted", campaign_id)
            message = f"Batch send failed: {exc}"
            try:
                await self.state.fail_run(campaign_id, message, owner=owner)
            except Exception:
                self.logger.exception("Campaign %s: could not record the aborted run", campaign_id)
            raise DispatchError(campaign_id, message) from exc
        finally:
            self.metrics.run_finished(campaign_id, run_status)

        result.status = status.value
        self.logger.info(
            "Campaign %s: run finished with status %s (%d sent, %d failed, %d batches)",
            campaign_id,
            status.value,
            result.successful,
            result.failed,
            result.batches,
        )
        return result

    async def _send_batch(
        self,
        campaign: dict[str, Any],
        text: str,
        index: int,
        total_batches: int,
        batch: list[Recipient],
    ) -> BatchOutcome:
        campaign_id = campaign["id"]
        outcome = BatchOutcome(index=index)
        self.logger.info(
            "Campaign %s: batch %d/%d (%d recipients)", campaign_id, index, total_batches, len(batch)
        )
        await self.db.deliveries.mark_pending(campaign_id, [r.email for r in batch])

        for position, recipient in enumerate(batch):
            await self.state.refresh_lock(campaign_id, campaign["lock_owner"])
            html = add_unsubscribe_link(
                campaign["content"],
                recipient.unsubscribe_token or "",
                campaign_id,
                self.site_url,
                self.site_name,
            )
            result = await self.transport.send(recipient.email, campaign["subject"], html, text)
            attempted_at = utc_now_iso()

            match result:
                case Delivered(message_id=message_id):
                    await self.db.deliveries.record_sent(
                        campaign_id, recipient.email, message_id=message_id, attempted_at=attempted_at
                    )
                    outcome.successful.append(recipient.email)
                    self.metrics.inc_sent(campaign_id)
                case Rejected() as rejected:
                    await self.db.deliveries.record_failed(
                        campaign_id,
                        recipient.email,
                        failure_reason=rejected.error,
                        error=rejected.describe(),
                        attempted_at=attempted_at,
                    )
                    outcome.failed.append(recipient.email)
                    self.metrics.inc_failed(campaign_id)
                    self.logger.warning(
                        "Campaign %s: delivery to %s failed (%s): %s",
                        campaign_id,
                        recipient.email,
                        "temporary" if rejected.temporary else "permanent",
                        rejected.describe(),
                    )
                case _:
                    raise TypeError(f"Unexpected send result: {result!r}")

            if position < len(batch) - 1:
                await self._sleep(self.config.inter_item_delay_ms / 1000)

        return outcome


__all__ = ["BatchDispatcher", "BatchOutcome", "RunResult", "partition"]
