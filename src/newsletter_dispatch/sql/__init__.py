# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async SQL layer with adapter pattern and table registration.

Usage:
    db = SqlDb("/data/newsletter.db")
    await db.connect()
    db.add_table(CampaignsTable)
    await db.check_structure()
    campaign = await db.table("campaigns").select_one(where={"id": "nl-1"})
    await db.close()
"""

from .adapters import DbAdapter, get_adapter
from .column import Boolean, Column, Columns, Integer, String, Timestamp
from .sqldb import SqlDb
from .table import Table

__all__ = [
    "SqlDb",
    "Table",
    "Column",
    "Columns",
    "Integer",
    "String",
    "Boolean",
    "Timestamp",
    "DbAdapter",
    "get_adapter",
]
