# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Daily send quota check backed by the deliveries table.

The quota is a sliding 24 hour window over successful deliveries of every
campaign. It is advisory: callers use it to warn before a run, the
dispatcher itself never defers or refuses recipients.

Example:
    quota = DailyQuota(db, daily_limit=10000)
    verdict = await quota.check(recipient_count=1200)
    if verdict["would_exceed"]:
        logger.warning("Run will exceed the daily limit")
"""

from __future__ import annotations

from typing import Any

from .newsletter_db import NewsletterDb
from .timeutils import utc_iso_hours_ago


class DailyQuota:
    """Sliding-window daily quota over sent deliveries.

    Attributes:
        db: Database holding the deliveries table.
        daily_limit: Maximum sends per 24 hours.
    """

    def __init__(self, db: NewsletterDb, daily_limit: int):
        self.db = db
        self.daily_limit = max(0, int(daily_limit))

    async def sent_last_24h(self) -> int:
        return await self.db.deliveries.count_sent_since(utc_iso_hours_ago(24))

    async def check(self, recipient_count: int) -> dict[str, Any]:
        """Compare a planned run against the remaining quota.

        Args:
            recipient_count: Number of recipients the run would send to.

        Returns:
            Dict with ``can_send`` (quota not yet exhausted), ``remaining_quota``,
            ``daily_limit`` and ``would_exceed`` (the run is larger than what remains).
        """
        sent = await self.sent_last_24h()
        remaining = max(0, self.daily_limit - sent)
        return {
            "can_send": remaining > 0,
            "remaining_quota": remaining,
            "daily_limit": self.daily_limit,
            "would_exceed": int(recipient_count) > remaining,
        }


__all__ = ["DailyQuota"]
