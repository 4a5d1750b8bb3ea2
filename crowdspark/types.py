"""
Shared enums for the CrowdSpark domain.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    BACKER = "backer"
    CAMPAIGN_OWNER = "campaignOwner"
    ADMIN = "admin"


# Roles a visitor may pick at registration. Admins are created out of band.
SELF_ASSIGNABLE_ROLES = (Role.BACKER, Role.CAMPAIGN_OWNER)

# Roles allowed to create campaigns.
CAMPAIGN_CREATOR_ROLES = (Role.CAMPAIGN_OWNER, Role.ADMIN)


class CampaignStatus(str, Enum):
    ACTIVE = "active"


class TransactionStatus(str, Enum):
    # Pending/failed payments are not modelled; a recorded contribution is final.
    COMPLETED = "completed"
