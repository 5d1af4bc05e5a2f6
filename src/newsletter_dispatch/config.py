# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclasses and environment loading.

Two groups of settings live here:

- :class:`DispatchConfig`, the pacing of a delivery run. It is passed
  explicitly to the dispatcher and built from the environment by
  :func:`load_dispatch_config`.
- :class:`ServerSettings`, what the HTTP server and CLI need to build a
  service (database path, SMTP account, API token). Read from ``NLD_*``
  variables by :func:`load_server_settings`.

Environment variables for dispatch tuning:
    EMAIL_PROVIDER - Provider profile (office365, gmail, sendgrid, mailgun, smtp)
    BATCH_SIZE - Recipients per batch
    BATCH_DELAY - Milliseconds between batches
    INTER_ITEM_DELAY - Milliseconds between sends inside a batch
    RETRY_ATTEMPTS - Advisory retry count (resume runs are the retry mechanism)
    DAILY_LIMIT - Daily send quota used by the quota check
    LOCK_TTL - Seconds a run lock stays valid without a refresh
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .logger import get_logger

logger = get_logger("config")

DEFAULT_PROVIDER = "office365"


@dataclass(frozen=True)
class ProviderProfile:
    """Rate limits suited to a mail provider."""

    batch_size: int
    batch_delay_ms: int
    daily_limit: int


PROVIDER_PROFILES: dict[str, ProviderProfile] = {
    "office365": ProviderProfile(batch_size=25, batch_delay_ms=3000, daily_limit=10000),
    "gmail": ProviderProfile(batch_size=15, batch_delay_ms=3000, daily_limit=500),
    "sendgrid": ProviderProfile(batch_size=25, batch_delay_ms=1000, daily_limit=10000),
    "mailgun": ProviderProfile(batch_size=30, batch_delay_ms=1500, daily_limit=5000),
    "smtp": ProviderProfile(batch_size=10, batch_delay_ms=5000, daily_limit=1000),
}


@dataclass(frozen=True)
class DispatchConfig:
    """Pacing of a delivery run."""

    batch_size: int = 25
    """Recipients per batch."""

    batch_delay_ms: int = 3000
    """Pause between consecutive batches, in milliseconds."""

    inter_item_delay_ms: int = 200
    """Pause between sends inside a batch, in milliseconds. Not applied after the last item."""

    retry_attempts: int = 3
    """Advisory: failed recipients are retried by a later 'failed' resume run."""

    lock_ttl_seconds: int = 600
    """How long a run lock survives without a refresh."""

    daily_limit: int = 10000
    """Daily send quota reported by the quota check."""

    provider: str = DEFAULT_PROVIDER
    """Name of the provider profile the values were derived from."""

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.batch_delay_ms < 0 or self.inter_item_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.retry_attempts < 0:
            raise ValueError("retry_attempts must be >= 0")
        if self.lock_ttl_seconds < 1:
            raise ValueError("lock_ttl_seconds must be >= 1")

    @classmethod
    def for_provider(cls, provider: str) -> DispatchConfig:
        """Build a config from a provider profile. Unknown names fall back to office365."""
        key = (provider or DEFAULT_PROVIDER).strip().lower()
        profile = PROVIDER_PROFILES.get(key)
        if profile is None:
            logger.warning("Unknown EMAIL_PROVIDER %r, falling back to %s", provider, DEFAULT_PROVIDER)
            key = DEFAULT_PROVIDER
            profile = PROVIDER_PROFILES[key]
        return cls(
            batch_size=profile.batch_size,
            batch_delay_ms=profile.batch_delay_ms,
            daily_limit=profile.daily_limit,
            provider=key,
        )


_DISPATCH_ENV_FIELDS = {
    "BATCH_SIZE": "batch_size",
    "BATCH_DELAY": "batch_delay_ms",
    "INTER_ITEM_DELAY": "inter_item_delay_ms",
    "RETRY_ATTEMPTS": "retry_attempts",
    "DAILY_LIMIT": "daily_limit",
    "LOCK_TTL": "lock_ttl_seconds",
}


def _env_int(env: Mapping[str, str], name: str) -> int | None:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return None


def load_dispatch_config(env: Mapping[str, str] | None = None) -> DispatchConfig:
    """Build the dispatch config from a provider profile plus explicit overrides.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        A validated DispatchConfig. Values that are not integers, or that the
        dataclass rejects, are ignored with a warning.
    """
    env = os.environ if env is None else env
    config = DispatchConfig.for_provider(env.get("EMAIL_PROVIDER", DEFAULT_PROVIDER))
    for var_name, field_name in _DISPATCH_ENV_FIELDS.items():
        value = _env_int(env, var_name)
        if value is None:
            continue
        try:
            config = replace(config, **{field_name: value})
        except ValueError as exc:
            logger.warning("Ignoring %s=%r: %s", var_name, value, exc)
    return config


def estimate_sending_time(recipient_count: int, config: DispatchConfig) -> dict[str, int]:
    """Estimate how long a run over ``recipient_count`` recipients takes.

    Assumes roughly 500 ms of processing per email on top of the
    inter-batch pauses.

    Returns:
        Dict with ``batches``, ``estimated_time_ms`` and ``estimated_time_minutes``.
    """
    count = max(0, int(recipient_count))
    batches = math.ceil(count / config.batch_size) if count else 0
    total_ms = max(batches - 1, 0) * config.batch_delay_ms + count * 500
    return {
        "batches": batches,
        "estimated_time_ms": total_ms,
        "estimated_time_minutes": math.ceil(total_ms / 60000),
    }


@dataclass
class ServerSettings:
    """Settings needed to assemble a running service."""

    db_path: str = "/data/newsletter.db"
    api_token: str | None = None
    log_level: str = "INFO"
    site_url: str = "http://localhost:3000"
    site_name: str = "our newsletter"
    host: str = "0.0.0.0"
    port: int = 8000
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    from_address: str | None = None

    def smtp_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.smtp_host,
            "port": self.smtp_port,
            "user": self.smtp_user,
            "password": self.smtp_password,
            "use_tls": self.smtp_use_tls,
            "from_address": self.from_address or self.smtp_user,
        }


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def load_server_settings(env: Mapping[str, str] | None = None) -> ServerSettings:
    """Read ``NLD_*`` environment variables.

    Environment variables:
      NLD_DB_PATH - Database path (default: /data/newsletter.db)
      NLD_API_TOKEN - API authentication token
      NLD_LOG_LEVEL - Logging level (default: INFO)
      NLD_SITE_URL - Base URL used in unsubscribe links
      NLD_SITE_NAME - Name shown in the unsubscribe footer
      NLD_HOST, NLD_PORT - HTTP bind address
      NLD_SMTP_HOST, NLD_SMTP_PORT, NLD_SMTP_USER, NLD_SMTP_PASSWORD, NLD_SMTP_USE_TLS
      NLD_FROM_ADDRESS - Sender address (default: NLD_SMTP_USER)
    """
    env = os.environ if env is None else env
    defaults = ServerSettings()
    return ServerSettings(
        db_path=env.get("NLD_DB_PATH", defaults.db_path),
        api_token=env.get("NLD_API_TOKEN") or None,
        log_level=env.get("NLD_LOG_LEVEL", defaults.log_level).upper(),
        site_url=env.get("NLD_SITE_URL", defaults.site_url).rstrip("/"),
        site_name=env.get("NLD_SITE_NAME", defaults.site_name),
        host=env.get("NLD_HOST", defaults.host),
        port=_env_int(env, "NLD_PORT") or defaults.port,
        smtp_host=env.get("NLD_SMTP_HOST") or None,
        smtp_port=_env_int(env, "NLD_SMTP_PORT") or defaults.smtp_port,
        smtp_user=env.get("NLD_SMTP_USER") or None,
        smtp_password=env.get("NLD_SMTP_PASSWORD") or None,
        smtp_use_tls=_parse_bool(env.get("NLD_SMTP_USE_TLS"), defaults.smtp_use_tls),
        from_address=env.get("NLD_FROM_ADDRESS") or None,
    )


__all__ = [
    "DEFAULT_PROVIDER",
    "PROVIDER_PROFILES",
    "DispatchConfig",
    "ProviderProfile",
    "ServerSettings",
    "estimate_sending_time",
    "load_dispatch_config",
    "load_server_settings",
]
