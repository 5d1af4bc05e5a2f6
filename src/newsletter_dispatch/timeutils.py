# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""UTC timestamp helpers shared by tables and services."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now_iso() -> str:
    """Return the current UTC time as ISO-8601 with millisecond precision and 'Z' suffix.

    The fixed width keeps stored values comparable as strings.
    """
    return iso_from_datetime(datetime.now(timezone.utc))


def iso_from_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_iso_hours_ago(hours: int) -> str:
    return iso_from_datetime(datetime.now(timezone.utc) - timedelta(hours=hours))
