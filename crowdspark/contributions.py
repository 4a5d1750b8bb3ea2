"""
Contribution recording.

The store applies the campaign total, supporter, transaction and backer
history updates as one unit; the campaign owner is notified after it commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from starlette.concurrency import run_in_threadpool

from crowdspark.db import CampaignRecord, DbClient, TransactionRecord
from crowdspark.notifications import NEW_BACKING, Notifier, publish_quietly
from crowdspark.security import Identity

logger = logging.getLogger(__name__)


class CampaignNotFoundError(LookupError):
    pass


@dataclass
class ContributionResult:
    campaign: CampaignRecord
    transaction: TransactionRecord


def new_backing_event(
    campaign_id: str, backer: str, amount: float, message: Optional[str]
) -> dict:
    return {
        "campaignId": campaign_id,
        "backer": backer,
        "amount": amount,
        "message": message,
    }


async def record_contribution(
    db: DbClient,
    notifier: Notifier,
    identity: Identity,
    *,
    campaign_id: str,
    amount: float,
    message: Optional[str] = None,
) -> ContributionResult:
    result = await run_in_threadpool(
        db.record_contribution,
        campaign_id,
        user_id=identity.id,
        amount=amount,
        provider=identity.username,
        message=message or "",
    )
    if result is None:
        logger.info("Contribution rejected, campaign %s not found", campaign_id)
        raise CampaignNotFoundError(campaign_id)

    campaign, transaction = result
    logger.info(
        "Recorded contribution %s of %s to campaign %s by %s (raised %s)",
        transaction.transaction_id,
        amount,
        campaign_id,
        identity.id,
        campaign.raised_amount,
    )

    await publish_quietly(
        notifier.emit(
            campaign.owner_id,
            NEW_BACKING,
            new_backing_event(campaign_id, identity.username, amount, message),
        ),
        NEW_BACKING,
    )
    return ContributionResult(campaign=campaign, transaction=transaction)
