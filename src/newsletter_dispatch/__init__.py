# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Newsletter batch delivery engine with resumable tracking.

Features:
    - Paced batch sending (batch size, inter-batch and inter-item delays)
    - Per-recipient delivery records, idempotent per campaign and address
    - Resume runs for failed, never-attempted or all unsent recipients
    - Campaign state machine with a per-campaign run lock
    - Progress, delivery status and CSV export
    - Prometheus metrics for monitoring
    - FastAPI REST API and click CLI
    - SQLite persistence

Example::

    from newsletter_dispatch import NewsletterCore
    from newsletter_dispatch.api import create_app

    core = NewsletterCore(db_path="/data/newsletter.db", transport=transport)
    app = create_app(core, api_token="secret")
"""

from .core import NewsletterCore

__version__ = "0.1.0"

__all__ = ["NewsletterCore", "__version__"]
