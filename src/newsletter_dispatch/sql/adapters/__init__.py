# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Database adapters and the connection-string factory."""

from .base import DbAdapter
from .sqlite import SqliteAdapter

__all__ = ["DbAdapter", "SqliteAdapter", "get_adapter"]


def get_adapter(connection_string: str) -> DbAdapter:
    """Create database adapter from connection string.

    Connection string formats:
        - "sqlite:/path/to/db.sqlite" or just "/path/to/db.sqlite"
        - a relative file name such as "newsletter.db"

    Args:
        connection_string: Database connection string.

    Returns:
        Configured DbAdapter instance.

    Raises:
        ValueError: If the string is empty or names an unsupported backend.
    """
    if not connection_string:
        raise ValueError("Empty database connection string")

    if connection_string.startswith("sqlite:"):
        return SqliteAdapter(connection_string.split(":", 1)[1])

    if "://" in connection_string:
        db_type = connection_string.split("://", 1)[0]
        raise ValueError(
            f"Unknown database type: '{db_type}'. Supported: sqlite"
        )

    return SqliteAdapter(connection_string)
