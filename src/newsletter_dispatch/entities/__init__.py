# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table managers for the newsletter delivery engine."""

from .campaign import CampaignsTable
from .delivery import DeliveriesTable
from .subscriber import SubscribersTable

__all__ = ["CampaignsTable", "DeliveriesTable", "SubscribersTable"]
