# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging helper for the newsletter dispatcher.

Handlers, level and format are configured once with ``logging.basicConfig()``
in the server entry point (see :mod:`newsletter_dispatch.server`); modules only
ask for a named logger.

Example:
    Typical usage in a module::

        from newsletter_dispatch.logger import get_logger

        logger = get_logger("dispatcher")
        logger.info("Batch %d/%d sent", index, total)
"""

import logging

ROOT_LOGGER_NAME = "newsletter_dispatch"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the ``newsletter_dispatch`` namespace.

    Args:
        name: Child logger name, e.g. ``"dispatcher"``. When omitted the
            package root logger is returned.

    Returns:
        A ``logging.Logger`` instance. No handlers are attached here.
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
