# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Service core wiring the delivery engine together.

NewsletterCore owns the database, resolver, state machine, dispatcher,
progress reporter and quota check, and exposes them through direct async
methods and a command interface used by the HTTP layer.

Example:
    Sending a campaign::

        from newsletter_dispatch.core import NewsletterCore
        from newsletter_dispatch.transport import SmtpTransport

        core = NewsletterCore(
            db_path="/data/newsletter.db",
            transport=SmtpTransport(host="smtp.example.com", from_address="news@example.com"),
        )
        await core.init()
        summary = await core.batch_send("nl-42", "failed")
        progress = await core.get_progress("nl-42")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .config import DispatchConfig, estimate_sending_time, load_dispatch_config
from .dispatcher import BatchDispatcher, RunResult
from .entities.campaign import ResumeType
from .exceptions import InvalidRequestError, NewsletterDispatchError, TransportConfigurationError
from .logger import get_logger
from .newsletter_db import NewsletterDb
from .progress import ProgressReporter
from .prometheus import DispatchMetrics
from .rate_limit import DailyQuota
from .resolver import RecipientResolver, parse_resume_type
from .state import CampaignStateMachine
from .transport import MailTransport


class NewsletterCore:
    """Central coordinator of the newsletter delivery engine.

    Attributes:
        db: Newsletter database.
        config: Dispatch pacing.
        metrics: Prometheus metrics collector.
        resolver: Recipient resolver.
        state: Campaign state machine.
        progress: Progress reporter.
        quota: Daily quota check.
        dispatcher: Batch dispatcher, or None when no transport is configured.
    """

    def __init__(
        self,
        *,
        db_path: str = "/data/newsletter.db",
        config: DispatchConfig | None = None,
        transport: MailTransport | None = None,
        metrics: DispatchMetrics | None = None,
        logger=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        site_url: str = "http://localhost:3000",
        site_name: str = "our newsletter",
    ):
        """Initialize the core.

        Args:
            db_path: SQLite database path.
            config: Dispatch pacing. If None, loaded from the environment.
            transport: Mail transport. Required only for sending.
            metrics: Prometheus metrics collector. If None, creates a new one.
            logger: Custom logger instance. If None, uses the package logger.
            sleep: Awaitable used for pacing pauses.
            clock: Wall clock used for run lock deadlines.
            site_url: Base URL for unsubscribe links.
            site_name: Name shown in the unsubscribe footer.
        """
        self.logger = logger or get_logger()
        self.config = config or load_dispatch_config()
        self.db = NewsletterDb(db_path)
        self.metrics = metrics or DispatchMetrics()
        self.transport = transport
        self.resolver = RecipientResolver(self.db)
        self.state = CampaignStateMachine(
            self.db, lock_ttl_seconds=self.config.lock_ttl_seconds, clock=clock, logger=self.logger
        )
        self.progress = ProgressReporter(self.db, self.resolver)
        self.quota = DailyQuota(self.db, self.config.daily_limit)
        self.dispatcher: BatchDispatcher | None = None
        if transport is not None:
            self.dispatcher = BatchDispatcher(
                self.db,
                transport,
                self.config,
                state=self.state,
                metrics=self.metrics,
                logger=self.logger,
                sleep=sleep,
                site_url=site_url,
                site_name=site_name,
            )

    async def init(self) -> None:
        """Create or migrate the database schema."""
        await self.db.init_db()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        await self.db.close()

    @staticmethod
    def _require_campaign_id(campaign_id: str | None) -> str:
        if not campaign_id or not str(campaign_id).strip():
            raise InvalidRequestError("campaignId is required")
        return str(campaign_id).strip()

    # ---------------------------------------------------------------- operations
    async def batch_send(
        self, campaign_id: str | None, resume_type: ResumeType | str | None = ResumeType.ALL
    ) -> dict[str, int]:
        """Resolve recipients for ``resume_type`` and run the campaign over them.

        Returns:
            ``{successful, failed, total, batches}``. All zero, with the
            campaign untouched, when nothing resolves.

        Raises:
            InvalidRequestError: Missing campaign id or unknown resume type.
            CampaignNotFoundError: Unknown campaign.
            InvalidTransitionError, CampaignLockedError: The run cannot start.
            TransportConfigurationError: Recipients resolved but no transport is configured.
            DispatchError: The run aborted.
        """
        campaign_id = self._require_campaign_id(campaign_id)
        mode = parse_resume_type(resume_type)
        recipients = await self.resolver.resolve(campaign_id, mode)
        if not recipients:
            self.logger.info("Campaign %s: no recipients for resume type '%s'", campaign_id, mode.value)
            return RunResult().summary()
        if self.dispatcher is None:
            raise TransportConfigurationError("No mail transport configured")

        verdict = await self.quota.check(len(recipients))
        if verdict["would_exceed"]:
            self.logger.warning(
                "Campaign %s: %d recipients exceed the remaining daily quota (%d of %d)",
                campaign_id,
                len(recipients),
                verdict["remaining_quota"],
                verdict["daily_limit"],
            )

        result = await self.dispatcher.dispatch(campaign_id, recipients)
        return result.summary()

    async def get_progress(self, campaign_id: str | None) -> dict[str, Any]:
        return await self.progress.get_progress(self._require_campaign_id(campaign_id))

    async def delivery_status(self, campaign_id: str | None) -> dict[str, Any]:
        return await self.progress.delivery_status(self._require_campaign_id(campaign_id))

    async def export_csv(self, campaign_id: str | None) -> str:
        return await self.progress.export_csv(self._require_campaign_id(campaign_id))

    async def estimate(
        self, campaign_id: str | None, resume_type: ResumeType | str | None = ResumeType.ALL
    ) -> dict[str, Any]:
        """Estimate duration and quota impact of a run without sending anything."""
        campaign_id = self._require_campaign_id(campaign_id)
        recipients = await self.resolver.resolve(campaign_id, resume_type)
        return {
            "campaign_id": campaign_id,
            "recipients": len(recipients),
            "provider": self.config.provider,
            "batch_size": self.config.batch_size,
            "batch_delay_ms": self.config.batch_delay_ms,
            "retry_attempts": self.config.retry_attempts,
            **estimate_sending_time(len(recipients), self.config),
            "quota": await self.quota.check(len(recipients)),
        }

    # ------------------------------------------------------------------ commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a command by name.

        Supported commands:
        - ``batchSend``: payload ``campaign_id``, ``resume_type``
        - ``getProgress``, ``deliveryStatus``, ``exportCsv``: payload ``campaign_id``
        - ``estimate``: payload ``campaign_id``, ``resume_type``

        Args:
            cmd: Command name to execute.
            payload: Command-specific parameters.

        Returns:
            dict: ``{"ok": True, ...}`` with the command result, or
            ``{"ok": False, "error": ..., "code": ...}`` for domain errors.
        """
        payload = payload or {}
        campaign_id = payload.get("campaign_id")
        try:
            match cmd:
                case "batchSend":
                    summary = await self.batch_send(campaign_id, payload.get("resume_type"))
                    return {"ok": True, **summary}
                case "getProgress":
                    return {"ok": True, **await self.get_progress(campaign_id)}
                case "deliveryStatus":
                    return {"ok": True, **await self.delivery_status(campaign_id)}
                case "exportCsv":
                    return {"ok": True, "csv": await self.export_csv(campaign_id)}
                case "estimate":
                    return {"ok": True, **await self.estimate(campaign_id, payload.get("resume_type"))}
                case _:
                    return {"ok": False, "error": "unknown command", "code": "unknown_command"}
        except NewsletterDispatchError as exc:
            return {"ok": False, "error": str(exc), "code": exc.code}


__all__ = ["NewsletterCore"]
