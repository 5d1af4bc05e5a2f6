# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from .schema import BatchInfo, CampaignCreate, CampaignStatus, CampaignType, ResumeType
from .table import CampaignsTable

__all__ = [
    "BatchInfo",
    "CampaignCreate",
    "CampaignStatus",
    "CampaignType",
    "CampaignsTable",
    "ResumeType",
]
