# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Usage:
    uvicorn newsletter_dispatch.server:app --host 0.0.0.0 --port 8000

Environment variables:
    NLD_DB_PATH: SQLite database path. Default: /data/newsletter.db
    NLD_API_TOKEN: API authentication token.
    NLD_LOG_LEVEL: Logging level (default: INFO).
    NLD_SMTP_HOST, NLD_SMTP_PORT, NLD_SMTP_USER, NLD_SMTP_PASSWORD,
    NLD_SMTP_USE_TLS, NLD_FROM_ADDRESS: Outgoing SMTP relay. Without
        NLD_SMTP_HOST the service starts read-only and batch sends fail.
    EMAIL_PROVIDER, BATCH_SIZE, BATCH_DELAY, INTER_ITEM_DELAY,
    RETRY_ATTEMPTS, DAILY_LIMIT, LOCK_TTL: Dispatch pacing.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import ServerSettings, load_dispatch_config, load_server_settings
from .core import NewsletterCore
from .transport import SmtpTransport

_logger = logging.getLogger(__name__)


def build_core(settings: ServerSettings) -> NewsletterCore:
    """Assemble the service core from settings."""
    transport = None
    if settings.smtp_host:
        transport = SmtpTransport(**settings.smtp_kwargs())
    else:
        _logger.warning("NLD_SMTP_HOST not set: batch sends are disabled")
    return NewsletterCore(
        db_path=settings.db_path,
        config=load_dispatch_config(),
        transport=transport,
        site_url=settings.site_url,
        site_name=settings.site_name,
    )


def build_app(settings: ServerSettings | None = None) -> FastAPI:
    """Create the FastAPI application with a lifespan that opens and closes the core."""
    settings = settings or load_server_settings()
    core = build_core(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        _logger.info("Starting newsletter dispatch service (db=%s)", settings.db_path)
        await core.init()
        try:
            yield
        finally:
            _logger.info("Stopping newsletter dispatch service")
            await core.close()

    return create_app(core, api_token=settings.api_token, lifespan=lifespan)


def run(settings: ServerSettings | None = None, reload: bool = False) -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = settings or load_server_settings()
    if reload:
        uvicorn.run(
            "newsletter_dispatch.server:app",
            host=settings.host,
            port=settings.port,
            reload=True,
            log_level=settings.log_level.lower(),
        )
        return
    uvicorn.run(build_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


_settings = load_server_settings()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = build_app(_settings)
