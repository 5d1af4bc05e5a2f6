# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from .table import DELIVERY_STATUSES, DeliveriesTable

__all__ = ["DELIVERY_STATUSES", "DeliveriesTable"]
