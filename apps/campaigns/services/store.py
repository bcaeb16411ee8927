"""
Campaign store.

Persistence primitives for campaigns and commitments. Status changes go
through conditional updates that only apply when the row is still in one
of the expected statuses, so two racing writers can never both win.
"""

import functools
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import OperationalError
from django.db.models import Sum
from django.utils import timezone

from apps.accounts.models import User
from apps.products.models import Product
from apps.campaigns.models import (
    Campaign,
    CampaignStatus,
    Commitment,
    CommitmentStatus,
    LIVE_CAMPAIGN_STATUSES,
    LIVE_COMMITMENT_STATUSES,
    PAID_COMMITMENT_STATUSES,
    PaymentMethod,
)

logger = logging.getLogger(__name__)


def campaign_duration() -> timedelta:
    return timedelta(days=getattr(settings, 'CAMPAIGN_DURATION_DAYS', 14))


def payment_timeout() -> timedelta:
    return timedelta(minutes=getattr(settings, 'CAMPAIGN_PAYMENT_TIMEOUT_MINUTES', 30))


def retry_on_contention(exhausted_error, message: str):
    """
    Retry a transactional function when the database reports lock contention.

    The wrapped function must open its own transaction so every attempt
    starts clean. After the last attempt the given domain error is raised.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            max_retries = getattr(settings, 'CAMPAIGN_MAX_RETRIES', 3)
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except OperationalError as exc:
                    logger.warning(
                        "Contention in %s (attempt %d/%d): %s",
                        func.__name__, attempt + 1, max_retries, exc
                    )
                    if attempt == max_retries - 1:
                        raise exhausted_error(message) from exc
                    time.sleep(0.05 * (attempt + 1))
            raise exhausted_error(message)
        return wrapper
    return decorator


# Lookups

def get_campaign(campaign_id: UUID, *, for_update: bool = False) -> Optional[Campaign]:
    queryset = Campaign.objects.select_related('product')
    if for_update:
        queryset = queryset.select_for_update(of=('self',))
    try:
        return queryset.get(id=campaign_id)
    except (Campaign.DoesNotExist, ValidationError, ValueError):
        return None


def get_commitment(commitment_id: UUID, *, for_update: bool = False) -> Optional[Commitment]:
    queryset = Commitment.objects.select_related('campaign', 'product', 'customer')
    if for_update:
        queryset = queryset.select_for_update(of=('self',))
    try:
        return queryset.get(id=commitment_id)
    except (Commitment.DoesNotExist, ValidationError, ValueError):
        return None


def get_customer(customer_id: UUID) -> Optional[User]:
    try:
        return User.objects.get(id=customer_id)
    except (User.DoesNotExist, ValidationError, ValueError):
        return None


def find_active_campaigns_for_product(product_id: UUID) -> List[Campaign]:
    """Campaigns for the product in WaitingPayment or Started."""
    return list(
        Campaign.objects
        .filter(product_id=product_id, status__in=LIVE_CAMPAIGN_STATUSES)
        .order_by('start_date')
    )


def find_initiator_commitment(campaign_id: UUID, customer_id: UUID) -> Optional[Commitment]:
    return (
        Commitment.objects
        .select_for_update()
        .filter(campaign_id=campaign_id, customer_id=customer_id, is_initiator=True)
        .first()
    )


def has_live_commitment(campaign_id: UUID, customer_id: UUID) -> bool:
    return Commitment.objects.filter(
        campaign_id=campaign_id,
        customer_id=customer_id,
        status__in=LIVE_COMMITMENT_STATUSES,
    ).exists()


def count_live_commitments(campaign_id: UUID) -> int:
    return Commitment.objects.filter(
        campaign_id=campaign_id,
        status__in=LIVE_COMMITMENT_STATUSES,
    ).count()


def sum_committed_quantity(
    campaign_id: UUID,
    statuses: Iterable[str] = PAID_COMMITMENT_STATUSES,
    *,
    include_cancelling: bool = True,
) -> int:
    """
    Total quantity of the campaign's commitments in the given statuses.

    With include_cancelling=False, commitments whose refund is in flight
    are left out.
    """
    queryset = Commitment.objects.filter(campaign_id=campaign_id, status__in=list(statuses))
    if not include_cancelling:
        queryset = queryset.filter(cancel_requested_at__isnull=True)
    total = queryset.aggregate(total=Sum('quantity'))['total']
    return total or 0


def sum_reserved_quantity(campaign_id: UUID, *, now: Optional[datetime] = None) -> int:
    """
    Paid quantity plus quantity held by unexpired unpaid commitments.

    An unpaid commitment holds its quantity for the payment timeout so a
    customer at checkout cannot be overtaken by later joiners.
    """
    now = now or timezone.now()
    paid = sum_committed_quantity(campaign_id, PAID_COMMITMENT_STATUSES)
    held = (
        Commitment.objects
        .filter(
            campaign_id=campaign_id,
            status=CommitmentStatus.WAITING_PAYMENT,
            created_at__gt=now - payment_timeout(),
        )
        .aggregate(total=Sum('quantity'))['total']
    )
    return paid + (held or 0)


def find_expired_open_campaigns(
    now: datetime,
    *,
    product_id: Optional[UUID] = None,
) -> List[Campaign]:
    """Live campaigns whose end date has passed."""
    queryset = Campaign.objects.filter(
        status__in=LIVE_CAMPAIGN_STATUSES,
        end_date__lt=now,
    )
    if product_id is not None:
        queryset = queryset.filter(product_id=product_id)
    return list(queryset.order_by('end_date'))


def find_stale_unpaid_commitments(
    cutoff: datetime,
    *,
    product_id: Optional[UUID] = None,
) -> List[Commitment]:
    """WaitingPayment commitments created before the cutoff."""
    queryset = Commitment.objects.filter(
        status=CommitmentStatus.WAITING_PAYMENT,
        created_at__lt=cutoff,
    )
    if product_id is not None:
        queryset = queryset.filter(product_id=product_id)
    return list(queryset.order_by('created_at'))


# Writes

def create_campaign(
    *,
    product: Product,
    anchor_location: Sequence[float],
    target_quantity: int,
    now: Optional[datetime] = None,
) -> Campaign:
    now = now or timezone.now()
    longitude, latitude = anchor_location
    return Campaign.objects.create(
        product=product,
        anchor_longitude=float(longitude),
        anchor_latitude=float(latitude),
        target_quantity=target_quantity,
        start_date=now,
        end_date=now + campaign_duration(),
        status=CampaignStatus.WAITING_PAYMENT,
    )


def create_commitment(
    *,
    campaign: Campaign,
    customer: User,
    product: Product,
    quantity: int,
    payment_method: str = PaymentMethod.CREDIT_CARD,
    is_initiator: bool = False,
) -> Commitment:
    return Commitment.objects.create(
        campaign=campaign,
        customer=customer,
        product=product,
        quantity=quantity,
        amount=(product.price * Decimal(quantity)).quantize(Decimal('0.01')),
        payment_method=payment_method,
        is_initiator=is_initiator,
        status=CommitmentStatus.WAITING_PAYMENT,
    )


def update_campaign_status(
    campaign_id: UUID,
    new_status: str,
    *,
    expected: Iterable[str],
    **fields,
) -> bool:
    """
    Move a campaign to new_status only if it is currently in expected.

    Returns:
        True if the row was updated, False if another writer got there first
    """
    updated = Campaign.objects.filter(
        id=campaign_id,
        status__in=list(expected),
    ).update(status=new_status, updated_at=timezone.now(), **fields)
    return updated == 1


def update_commitment_status(
    commitment_id: UUID,
    new_status: str,
    *,
    expected: Iterable[str],
    **fields,
) -> bool:
    """Conditional status update for a single commitment."""
    updated = Commitment.objects.filter(
        id=commitment_id,
        status__in=list(expected),
    ).update(status=new_status, updated_at=timezone.now(), **fields)
    return updated == 1


def update_campaign_commitments(
    campaign_id: UUID,
    new_status: str,
    *,
    expected: Iterable[str],
    include_cancelling: bool = True,
    **fields,
) -> int:
    """Bulk conditional update of a campaign's commitments. Returns the row count."""
    queryset = Commitment.objects.filter(
        campaign_id=campaign_id,
        status__in=list(expected),
    )
    if not include_cancelling:
        queryset = queryset.filter(cancel_requested_at__isnull=True)
    return queryset.update(status=new_status, updated_at=timezone.now(), **fields)


def set_payment_session(commitment_id: UUID, session_id: str) -> None:
    Commitment.objects.filter(id=commitment_id).update(
        payment_session_id=session_id,
        updated_at=timezone.now(),
    )


def mark_cancel_requested(commitment_id: UUID, now: datetime) -> bool:
    """
    Flag a Pending commitment as being cancelled.

    Returns:
        False if the commitment is no longer Pending or is already flagged
    """
    updated = Commitment.objects.filter(
        id=commitment_id,
        status=CommitmentStatus.PENDING,
        cancel_requested_at__isnull=True,
    ).update(cancel_requested_at=now, updated_at=timezone.now())
    return updated == 1


def clear_cancel_request(commitment_id: UUID) -> None:
    Commitment.objects.filter(id=commitment_id).update(
        cancel_requested_at=None,
        updated_at=timezone.now(),
    )


def record_refund(commitment_id: UUID, *, refund_id: str, refund_status: str) -> None:
    Commitment.objects.filter(id=commitment_id).update(
        refund_id=refund_id,
        refund_status=refund_status,
        updated_at=timezone.now(),
    )


def cancel_campaign_if_empty(campaign_id: UUID, now: Optional[datetime] = None) -> bool:
    """
    Cancel a live campaign that has no live commitments left.

    Caller must hold the campaign row lock.

    Returns:
        True if the campaign was cancelled by this call
    """
    if count_live_commitments(campaign_id) > 0:
        return False
    cancelled = update_campaign_status(
        campaign_id,
        CampaignStatus.CANCELLED,
        expected=LIVE_CAMPAIGN_STATUSES,
        cancelled_at=now or timezone.now(),
    )
    if cancelled:
        logger.info("Campaign %s cancelled: no live commitments left", campaign_id)
    return cancelled
