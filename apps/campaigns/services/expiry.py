"""
Expiry sweeper.

Ends live campaigns whose end date has passed and releases commitments
whose payment never arrived. Runs from the sweep_expired_campaigns
management command and opportunistically before engine reads, so it
must be idempotent: a second run over the same state changes nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from apps.campaigns.models import (
    CampaignStatus,
    CommitmentStatus,
    LIVE_CAMPAIGN_STATUSES,
    LIVE_COMMITMENT_STATUSES,
)

from . import store

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired_campaigns: int = 0
    released_commitments: int = 0


def sweep(now: Optional[datetime] = None, *, product_id: Optional[UUID] = None) -> SweepReport:
    """Run both sweeps, optionally scoped to one product."""
    now = now or timezone.now()
    return SweepReport(
        expired_campaigns=sweep_expired(now, product_id=product_id),
        released_commitments=release_stale_payments(now, product_id=product_id),
    )


def sweep_expired(now: Optional[datetime] = None, *, product_id: Optional[UUID] = None) -> int:
    """
    Move every overdue live campaign to EndedWithoutPurchase.

    Each campaign is handled in its own transaction. A failure on one
    campaign is logged and the batch continues.

    Args:
        now: Reference time, defaults to the current time
        product_id: Only sweep campaigns for this product

    Returns:
        Number of campaigns transitioned by this call
    """
    now = now or timezone.now()
    expired = 0

    for campaign in store.find_expired_open_campaigns(now, product_id=product_id):
        try:
            if _expire_campaign(campaign.id, now):
                expired += 1
        except Exception:
            logger.exception("Failed to expire campaign %s", campaign.id)

    if expired:
        logger.info("Expired %d campaign(s)", expired)
    return expired


@transaction.atomic
def _expire_campaign(campaign_id: UUID, now: datetime) -> bool:
    campaign = store.get_campaign(campaign_id, for_update=True)
    if campaign is None or not campaign.is_live or campaign.end_date >= now:
        return False

    if not store.update_campaign_status(
        campaign_id,
        CampaignStatus.ENDED_WITHOUT_PURCHASE,
        expected=LIVE_CAMPAIGN_STATUSES,
    ):
        return False

    ended = store.update_campaign_commitments(
        campaign_id,
        CommitmentStatus.ENDED_WITHOUT_PURCHASE,
        expected=LIVE_COMMITMENT_STATUSES,
    )
    logger.info(
        "Campaign %s ended without purchase (%d commitment(s) closed)",
        campaign_id, ended
    )
    return True


def release_stale_payments(now: Optional[datetime] = None, *, product_id: Optional[UUID] = None) -> int:
    """
    Cancel WaitingPayment commitments older than the payment timeout.

    A campaign left without live commitments is cancelled as well.

    Returns:
        Number of commitments released by this call
    """
    now = now or timezone.now()
    cutoff = now - store.payment_timeout()
    released = 0

    for commitment in store.find_stale_unpaid_commitments(cutoff, product_id=product_id):
        try:
            if _release_commitment(commitment.id, commitment.campaign_id, now):
                released += 1
        except Exception:
            logger.exception("Failed to release commitment %s", commitment.id)

    if released:
        logger.info("Released %d unpaid commitment(s)", released)
    return released


@transaction.atomic
def _release_commitment(commitment_id: UUID, campaign_id: UUID, now: datetime) -> bool:
    store.get_campaign(campaign_id, for_update=True)
    released = store.update_commitment_status(
        commitment_id,
        CommitmentStatus.CANCELLED,
        expected=[CommitmentStatus.WAITING_PAYMENT],
        cancellation_reason='Payment timeout',
        cancelled_at=now,
    )
    if released:
        store.cancel_campaign_if_empty(campaign_id, now)
    return released
