"""
Campaign lifecycle engine.

Every state-changing operation follows the same shape:

1. Validate and reserve under row locks in a short transaction
2. Talk to the payment gateway with no locks held
3. Promote status with a conditional update in a second transaction
4. Notify the customer after commit

Campaign rows are locked before commitment rows everywhere, and starts
for one product are serialized on the product row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.db.models import QuerySet
from django.urls import reverse
from django.utils import timezone

from apps.accounts.models import User
from apps.products.catalog import get_product
from apps.campaigns.models import (
    Campaign,
    CampaignStatus,
    Commitment,
    CommitmentStatus,
    LIVE_COMMITMENT_STATUSES,
    PAID_COMMITMENT_STATUSES,
    PaymentMethod,
)

from . import geo, store
from .exceptions import (
    CampaignNotFoundError,
    CapacityExceededError,
    CommitmentNotFoundError,
    CustomerNotFoundError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    PaymentProviderError,
    ProductNotFoundError,
    ProximityConflictError,
    RefundFailedError,
)
from .expiry import sweep
from .notifications import get_notifier
from .payments import PaymentGatewayError, RefundResult, get_payment_gateway

logger = logging.getLogger(__name__)

CONTENDED_CAPACITY = 'Campaign is busy, please retry.'
CONTENDED_STATE = 'Campaign state is busy, please retry.'

FULL_REASON = 'Campaign filled up before the payment arrived'
LAPSED_REASON = 'Payment arrived after the commitment was closed'
COMPLETED_REASON = 'Campaign completed before payment'


@dataclass
class Checkout:
    """A reserved commitment waiting for the customer to pay."""
    campaign: Campaign
    commitment: Commitment
    session_id: str
    session_url: str


@dataclass
class Confirmation:
    commitment: Commitment
    campaign_status: str
    already_confirmed: bool = False
    rejected: bool = False
    # Raised once a rejected payment has been refunded
    error: Optional[Exception] = None


@dataclass
class Cancellation:
    commitment: Commitment
    refund_status: str
    refund_id: str = ''
    campaign_cancelled: bool = False


# Validation helpers

def _validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInputError('Quantity must be a positive integer.')


def _resolve_location(location: Optional[Sequence[float]], customer: User) -> List[float]:
    """Use the given location, falling back to the customer's home."""
    if location is None:
        location = customer.coordinates
    if not geo.is_valid_location(location):
        raise InvalidInputError('Location must be [longitude, latitude].')
    return [float(location[0]), float(location[1])]


def _require_product(product_id):
    product = get_product(product_id)
    if product is None:
        raise ProductNotFoundError()
    return product


def _check_session(commitment: Commitment, payment_session_id: str) -> None:
    if (
        payment_session_id
        and commitment.payment_session_id
        and payment_session_id != commitment.payment_session_id
    ):
        raise ForbiddenError('Payment session does not belong to this commitment.')


def _callback_url(name: str, **kwargs) -> str:
    base = settings.PAYMENT_CALLBACK_BASE_URL.rstrip('/')
    path = reverse(name, kwargs={key: str(value) for key, value in kwargs.items()})
    return f'{base}{path}?session_id={{CHECKOUT_SESSION_ID}}'


# Checkout

def _begin_checkout(
    *,
    campaign: Campaign,
    commitment: Commitment,
    customer: User,
    kind: str,
    success_url: str,
) -> Checkout:
    """Open a payment session for a reserved commitment, outside any lock."""
    metadata = {
        'kind': kind,
        'campaign_id': str(campaign.id),
        'customer_id': str(customer.id),
        'commitment_id': str(commitment.id),
    }
    try:
        session = get_payment_gateway().create_payment_session(
            customer_email=customer.email,
            amount=commitment.amount,
            currency=settings.CAMPAIGN_CURRENCY,
            success_url=success_url,
            cancel_url=settings.PAYMENT_CANCEL_URL,
            metadata=metadata,
            description=f'{commitment.product.name} x {commitment.quantity}',
        )
    except PaymentGatewayError as exc:
        logger.error(
            "Payment session for commitment %s failed, abandoning: %s",
            commitment.id, exc
        )
        _abandon_checkout(campaign.id, commitment.id)
        raise PaymentProviderError('Payment session could not be created.') from exc

    store.set_payment_session(commitment.id, session.session_id)
    commitment.payment_session_id = session.session_id
    return Checkout(
        campaign=campaign,
        commitment=commitment,
        session_id=session.session_id,
        session_url=session.session_url,
    )


@transaction.atomic
def _abandon_checkout(campaign_id: UUID, commitment_id: UUID) -> None:
    now = timezone.now()
    store.get_campaign(campaign_id, for_update=True)
    store.update_commitment_status(
        commitment_id,
        CommitmentStatus.CANCELLED,
        expected=[CommitmentStatus.WAITING_PAYMENT],
        cancellation_reason='Payment session could not be created',
        cancelled_at=now,
    )
    store.cancel_campaign_if_empty(campaign_id, now)


# Start

def start_campaign(
    *,
    product_id: UUID,
    customer: User,
    quantity: int,
    location: Optional[Sequence[float]] = None,
    payment_method: str = PaymentMethod.CREDIT_CARD,
) -> Checkout:
    """
    Open a new campaign anchored at the customer's location.

    The campaign and the initiator's commitment are created in
    WaitingPayment; the campaign starts once the payment is confirmed.

    Args:
        product_id: Product to buy in bulk
        customer: Initiating customer
        quantity: Units the initiator commits to
        location: [longitude, latitude], defaults to the customer's home
        payment_method: How the customer pays

    Returns:
        Checkout with the payment session to redirect the customer to

    Raises:
        ProductNotFoundError: If the product doesn't exist
        InvalidInputError: If location or quantity is malformed
        CapacityExceededError: If quantity exceeds the bulk threshold
        ProximityConflictError: If a live campaign is within the exclusion radius
        PaymentProviderError: If the payment session could not be created
    """
    product = _require_product(product_id)
    sweep(product_id=product.id)

    campaign, commitment = _open_campaign(
        product_id=product.id,
        customer=customer,
        quantity=quantity,
        location=location,
        payment_method=payment_method,
    )
    logger.info(
        "Campaign %s opened for product %s by %s (quantity %d)",
        campaign.id, product.id, customer.id, quantity
    )

    return _begin_checkout(
        campaign=campaign,
        commitment=commitment,
        customer=customer,
        kind='start',
        success_url=_callback_url(
            'campaigns:start-payment-success',
            campaign_id=campaign.id,
            customer_id=customer.id,
        ),
    )


@store.retry_on_contention(CapacityExceededError, CONTENDED_CAPACITY)
@transaction.atomic
def _open_campaign(*, product_id, customer, quantity, location, payment_method):
    # Product row lock serializes concurrent starts for the same product
    product = get_product(product_id, for_update=True)
    if product is None:
        raise ProductNotFoundError()

    anchor = _resolve_location(location, customer)
    _validate_quantity(quantity)

    if quantity > product.bulk_threshold:
        raise CapacityExceededError(
            f'Quantity {quantity} exceeds the bulk threshold of {product.bulk_threshold}.'
        )

    for active in store.find_active_campaigns_for_product(product.id):
        if geo.within_radius(anchor, active.anchor_location):
            raise ProximityConflictError(
                'A campaign for this product is already running near this location.'
            )

    campaign = store.create_campaign(
        product=product,
        anchor_location=anchor,
        target_quantity=product.bulk_threshold,
    )
    commitment = store.create_commitment(
        campaign=campaign,
        customer=customer,
        product=product,
        quantity=quantity,
        payment_method=payment_method,
        is_initiator=True,
    )
    return campaign, commitment


# Join

def join_campaign(
    *,
    campaign_id: UUID,
    product_id: UUID,
    customer: User,
    quantity: int,
    location: Optional[Sequence[float]] = None,
    payment_method: str = PaymentMethod.CREDIT_CARD,
) -> Checkout:
    """
    Reserve quantity in a live campaign near the customer.

    Completion is deferred to payment confirmation, so a join that fills
    the campaign exactly still proceeds.

    Raises:
        CampaignNotFoundError: If the campaign doesn't exist
        ProductNotFoundError: If the product doesn't exist
        InvalidInputError: If the campaign is for another product, or input is malformed
        InvalidStateError: If the campaign no longer accepts commitments
        ProximityConflictError: If the customer is outside the campaign radius
        CapacityExceededError: If quantity exceeds the remaining capacity
        PaymentProviderError: If the payment session could not be created
    """
    if store.get_campaign(campaign_id) is None:
        raise CampaignNotFoundError()
    product = _require_product(product_id)
    sweep(product_id=product.id)

    campaign, commitment = _reserve_join(
        campaign_id=campaign_id,
        product_id=product.id,
        customer=customer,
        quantity=quantity,
        location=location,
        payment_method=payment_method,
    )
    logger.info(
        "Customer %s joined campaign %s (quantity %d)",
        customer.id, campaign.id, quantity
    )

    return _begin_checkout(
        campaign=campaign,
        commitment=commitment,
        customer=customer,
        kind='join',
        success_url=_callback_url(
            'campaigns:join-payment-success',
            campaign_id=campaign.id,
            customer_id=customer.id,
            commitment_id=commitment.id,
        ),
    )


@store.retry_on_contention(CapacityExceededError, CONTENDED_CAPACITY)
@transaction.atomic
def _reserve_join(*, campaign_id, product_id, customer, quantity, location, payment_method):
    campaign = store.get_campaign(campaign_id, for_update=True)
    if campaign is None:
        raise CampaignNotFoundError()

    product = get_product(product_id)
    if product is None:
        raise ProductNotFoundError()
    if campaign.product_id != product.id:
        raise InvalidInputError('Campaign is not for this product.')

    position = _resolve_location(location, customer)
    _validate_quantity(quantity)

    if not campaign.is_live:
        raise InvalidStateError(
            f'Campaign is {campaign.get_status_display()} and no longer accepts commitments.'
        )

    if not geo.within_radius(position, campaign.anchor_location):
        raise ProximityConflictError('You are outside the campaign area.')

    if store.has_live_commitment(campaign.id, customer.id):
        raise InvalidStateError('You already have an active commitment in this campaign.')

    reserved = store.sum_reserved_quantity(campaign.id)
    if reserved + quantity > campaign.target_quantity:
        remaining = max(0, campaign.target_quantity - reserved)
        raise CapacityExceededError(f'Only {remaining} unit(s) left in this campaign.')

    commitment = store.create_commitment(
        campaign=campaign,
        customer=customer,
        product=product,
        quantity=quantity,
        payment_method=payment_method,
    )
    return campaign, commitment


# Payment confirmation

def confirm_start_payment(
    *,
    campaign_id: UUID,
    customer_id: UUID,
    payment_session_id: str = '',
) -> Confirmation:
    """
    Promote the initiator's commitment to Pending and start the campaign.

    Confirming an already paid commitment is a no-op. A start whose
    quantity equals the target completes the campaign immediately.

    Raises:
        CampaignNotFoundError, CustomerNotFoundError, CommitmentNotFoundError
        InvalidStateError: If the campaign or commitment is no longer waiting for
            payment; the payment is refunded
        CapacityExceededError: If the campaign filled up before the payment arrived;
            the payment is refunded
    """
    confirmation = _confirm_start(
        campaign_id=campaign_id,
        customer_id=customer_id,
        payment_session_id=payment_session_id,
    )
    return _after_confirmation(confirmation, payment_session_id)


@store.retry_on_contention(InvalidStateError, CONTENDED_STATE)
@transaction.atomic
def _confirm_start(*, campaign_id, customer_id, payment_session_id):
    campaign = store.get_campaign(campaign_id, for_update=True)
    if campaign is None:
        raise CampaignNotFoundError()
    customer = store.get_customer(customer_id)
    if customer is None:
        raise CustomerNotFoundError()

    commitment = store.find_initiator_commitment(campaign.id, customer.id)
    if commitment is None:
        raise CommitmentNotFoundError('No initiating commitment for this customer.')
    _check_session(commitment, payment_session_id)

    if _already_paid(commitment):
        logger.info("Duplicate start confirmation for campaign %s ignored", campaign.id)
        return Confirmation(commitment=commitment, campaign_status=campaign.status, already_confirmed=True)

    now = timezone.now()
    if (
        commitment.status != CommitmentStatus.WAITING_PAYMENT
        or campaign.status != CampaignStatus.WAITING_PAYMENT
    ):
        logger.warning(
            "Start payment for campaign %s arrived with campaign %s and commitment %s",
            campaign.id, campaign.status, commitment.status
        )
        return _reject_payment(
            campaign,
            commitment,
            now,
            reason=LAPSED_REASON,
            error=InvalidStateError(
                f'Campaign is {campaign.get_status_display()} and can no longer be started; '
                'the payment is being refunded.'
            ),
        )

    if not _fits(campaign, commitment):
        return _reject_payment(campaign, commitment, now, reason=FULL_REASON, error=_full_error())

    store.update_campaign_status(
        campaign.id,
        CampaignStatus.STARTED,
        expected=[CampaignStatus.WAITING_PAYMENT],
    )
    _promote(commitment, payment_session_id, now)
    _complete_if_filled(campaign, now)

    campaign.refresh_from_db()
    commitment.refresh_from_db()
    logger.info("Campaign %s started", campaign.id)
    return Confirmation(commitment=commitment, campaign_status=campaign.status)


def confirm_join_payment(
    *,
    campaign_id: UUID,
    customer_id: UUID,
    commitment_id: UUID,
    payment_session_id: str = '',
) -> Confirmation:
    """
    Promote a joiner's commitment to Pending and complete the campaign if full.

    Raises:
        CampaignNotFoundError, CustomerNotFoundError, CommitmentNotFoundError
        ForbiddenError: If the commitment belongs to another customer
        InvalidStateError: If the campaign or commitment is no longer waiting for
            payment; the payment is refunded
        CapacityExceededError: If the campaign filled up before the payment arrived;
            the payment is refunded
    """
    confirmation = _confirm_join(
        campaign_id=campaign_id,
        customer_id=customer_id,
        commitment_id=commitment_id,
        payment_session_id=payment_session_id,
    )
    return _after_confirmation(confirmation, payment_session_id)


@store.retry_on_contention(InvalidStateError, CONTENDED_STATE)
@transaction.atomic
def _confirm_join(*, campaign_id, customer_id, commitment_id, payment_session_id):
    campaign = store.get_campaign(campaign_id, for_update=True)
    if campaign is None:
        raise CampaignNotFoundError()
    customer = store.get_customer(customer_id)
    if customer is None:
        raise CustomerNotFoundError()

    commitment = store.get_commitment(commitment_id, for_update=True)
    if commitment is None or commitment.campaign_id != campaign.id:
        raise CommitmentNotFoundError()
    if commitment.customer_id != customer.id:
        raise ForbiddenError('Commitment belongs to another customer.')
    _check_session(commitment, payment_session_id)

    if _already_paid(commitment):
        logger.info("Duplicate join confirmation for commitment %s ignored", commitment.id)
        return Confirmation(commitment=commitment, campaign_status=campaign.status, already_confirmed=True)

    now = timezone.now()
    if commitment.status != CommitmentStatus.WAITING_PAYMENT or not campaign.is_live:
        logger.warning(
            "Join payment for commitment %s arrived with campaign %s and commitment %s",
            commitment.id, campaign.status, commitment.status
        )
        return _reject_payment(
            campaign,
            commitment,
            now,
            reason=LAPSED_REASON,
            error=InvalidStateError(
                f'Commitment is {commitment.get_status_display()} and can no longer be paid; '
                'the payment is being refunded.'
            ),
        )

    if not _fits(campaign, commitment):
        return _reject_payment(campaign, commitment, now, reason=FULL_REASON, error=_full_error())

    _promote(commitment, payment_session_id, now)
    _complete_if_filled(campaign, now)

    campaign.refresh_from_db()
    commitment.refresh_from_db()
    return Confirmation(commitment=commitment, campaign_status=campaign.status)


def _already_paid(commitment: Commitment) -> bool:
    # paid_at survives a later cancellation or expiry of a paid commitment
    return commitment.status in PAID_COMMITMENT_STATUSES or commitment.paid_at is not None


def _fits(campaign: Campaign, commitment: Commitment) -> bool:
    # Commitments with a refund in flight keep their units until it settles
    paid = store.sum_committed_quantity(campaign.id, PAID_COMMITMENT_STATUSES)
    return paid + commitment.quantity <= campaign.target_quantity


def _full_error() -> CapacityExceededError:
    return CapacityExceededError(
        'Campaign filled up before the payment arrived; the payment is being refunded.'
    )


def _promote(commitment: Commitment, payment_session_id: str, now: datetime) -> None:
    promoted = store.update_commitment_status(
        commitment.id,
        CommitmentStatus.PENDING,
        expected=[CommitmentStatus.WAITING_PAYMENT],
        paid_at=now,
        payment_reference=payment_session_id or commitment.payment_session_id,
    )
    if not promoted:
        raise InvalidStateError('Commitment changed state while confirming payment.')


def _reject_payment(
    campaign: Campaign,
    commitment: Commitment,
    now: datetime,
    *,
    reason: str,
    error: Exception,
) -> Confirmation:
    """
    Turn down a payment the engine can no longer honour.

    A commitment still waiting for payment is cancelled with the given
    reason; one the engine already released keeps its original reason.
    The refund itself happens after the transaction commits.
    """
    store.update_commitment_status(
        commitment.id,
        CommitmentStatus.CANCELLED,
        expected=[CommitmentStatus.WAITING_PAYMENT],
        cancellation_reason=reason,
        cancelled_at=now,
    )
    store.cancel_campaign_if_empty(campaign.id, now)
    campaign.refresh_from_db()
    commitment.refresh_from_db()
    logger.warning(
        "Payment for commitment %s rejected (%s), campaign %s is %s",
        commitment.id, commitment.cancellation_reason or reason, campaign.id, campaign.status
    )
    return Confirmation(
        commitment=commitment,
        campaign_status=campaign.status,
        rejected=True,
        error=error,
    )


def _complete_if_filled(campaign: Campaign, now: datetime) -> bool:
    """
    Complete a Started campaign whose paid quantity reached the target.

    Commitments with a refund in flight neither count toward the target
    nor move to Completed. Caller must hold the campaign row lock.
    """
    paid = store.sum_committed_quantity(
        campaign.id,
        PAID_COMMITMENT_STATUSES,
        include_cancelling=False,
    )
    if paid < campaign.target_quantity:
        return False

    if not store.update_campaign_status(
        campaign.id,
        CampaignStatus.COMPLETED,
        expected=[CampaignStatus.STARTED],
        completed_at=now,
    ):
        return False

    store.update_campaign_commitments(
        campaign.id,
        CommitmentStatus.COMPLETED,
        expected=[CommitmentStatus.PENDING],
        include_cancelling=False,
    )
    # Unpaid reservations can no longer be honoured
    store.update_campaign_commitments(
        campaign.id,
        CommitmentStatus.CANCELLED,
        expected=[CommitmentStatus.WAITING_PAYMENT],
        cancellation_reason=COMPLETED_REASON,
        cancelled_at=now,
    )
    logger.info("Campaign %s completed with %d unit(s)", campaign.id, paid)
    return True


def _after_confirmation(confirmation: Confirmation, payment_session_id: str) -> Confirmation:
    commitment = confirmation.commitment
    notifier = get_notifier()

    if confirmation.rejected:
        if commitment.refund_id:
            logger.info(
                "Payment for commitment %s already refunded as %s",
                commitment.id, commitment.refund_id
            )
        else:
            refund_status = _refund_rejected_payment(commitment, payment_session_id)
            notifier.send_cancellation(
                customer_id=commitment.customer_id,
                commitment_id=commitment.id,
                refund_status=refund_status,
            )
        raise confirmation.error

    if not confirmation.already_confirmed:
        notifier.send_invoice(
            customer_id=commitment.customer_id,
            campaign_id=commitment.campaign_id,
            commitment_id=commitment.id,
        )
    return confirmation


def _refund_rejected_payment(commitment: Commitment, payment_session_id: str) -> str:
    reference = payment_session_id or commitment.payment_session_id
    if not reference:
        return 'No payment to refund'
    try:
        result = get_payment_gateway().refund(
            payment_reference=reference,
            amount=commitment.amount,
            reason=commitment.cancellation_reason,
            idempotency_key=f'reject-{commitment.id}',
        )
    except PaymentGatewayError as exc:
        logger.error("Refund for rejected commitment %s failed: %s", commitment.id, exc)
        store.record_refund(commitment.id, refund_id='', refund_status='failed')
        return 'Refund failed, our team will contact you'

    store.record_refund(commitment.id, refund_id=result.refund_id, refund_status=result.status)
    return f'Refund {result.status}'


def handle_payment_event(event: Dict[str, Any]) -> Optional[Confirmation]:
    """
    Confirm a payment from a provider webhook event.

    Only completed checkout sessions are acted on; other events are ignored.
    """
    if event.get('type') != 'checkout.session.completed':
        logger.debug("Ignoring payment event %s", event.get('type'))
        return None

    session = event['data']['object']
    metadata = session.get('metadata') or {}
    kind = metadata.get('kind')

    if kind == 'start':
        return confirm_start_payment(
            campaign_id=metadata['campaign_id'],
            customer_id=metadata['customer_id'],
            payment_session_id=session['id'],
        )
    if kind == 'join':
        return confirm_join_payment(
            campaign_id=metadata['campaign_id'],
            customer_id=metadata['customer_id'],
            commitment_id=metadata['commitment_id'],
            payment_session_id=session['id'],
        )

    logger.warning("Checkout session %s has no campaign metadata", session.get('id'))
    return None


# Cancellation

def cancel_commitment(
    *,
    commitment_id: UUID,
    customer: User,
    reason: str = '',
) -> Cancellation:
    """
    Cancel a live commitment, refunding it first if it was paid.

    A paid commitment is flagged as being cancelled under the campaign
    lock, so a concurrent completion neither counts it nor completes it.
    The refund is then requested with no locks held. If it fails, the flag
    is cleared and the commitment stays Pending. A campaign left without
    live commitments is cancelled.

    Raises:
        CommitmentNotFoundError: If the commitment doesn't exist
        ForbiddenError: If the commitment belongs to another customer
        InvalidStateError: If the commitment is terminal or already being cancelled
        RefundFailedError: If the gateway failed or refused the refund
    """
    commitment = _lock_for_cancellation(commitment_id=commitment_id, customer=customer)

    refund = None
    if commitment.status == CommitmentStatus.PENDING:
        try:
            refund = _issue_refund(commitment, reason)
        except RefundFailedError:
            _withdraw_cancellation(commitment)
            raise

    campaign_cancelled = _finalize_cancellation(commitment, refund, reason)
    commitment.refresh_from_db()

    if refund is not None:
        refund_status = f'Refund {refund.status}'
    else:
        refund_status = 'No payment to refund'

    logger.info(
        "Commitment %s cancelled by %s (%s)",
        commitment.id, customer.id, refund_status
    )
    get_notifier().send_cancellation(
        customer_id=customer.id,
        commitment_id=commitment.id,
        refund_status=refund_status,
    )

    return Cancellation(
        commitment=commitment,
        refund_status=refund_status,
        refund_id=refund.refund_id if refund else '',
        campaign_cancelled=campaign_cancelled,
    )


@store.retry_on_contention(InvalidStateError, CONTENDED_STATE)
@transaction.atomic
def _lock_for_cancellation(*, commitment_id, customer):
    commitment = store.get_commitment(commitment_id)
    if commitment is None:
        raise CommitmentNotFoundError()
    if commitment.customer_id != customer.id:
        raise ForbiddenError('You can only cancel your own commitments.')

    store.get_campaign(commitment.campaign_id, for_update=True)
    commitment = store.get_commitment(commitment_id, for_update=True)
    if commitment.status not in LIVE_COMMITMENT_STATUSES:
        raise InvalidStateError(
            f'Commitment is {commitment.get_status_display()} and cannot be cancelled.'
        )

    if commitment.status == CommitmentStatus.PENDING:
        now = timezone.now()
        if not store.mark_cancel_requested(commitment.id, now):
            raise InvalidStateError('A cancellation for this commitment is already in progress.')
        commitment.cancel_requested_at = now
    return commitment


@store.retry_on_contention(InvalidStateError, CONTENDED_STATE)
@transaction.atomic
def _withdraw_cancellation(commitment):
    """Put a commitment whose refund failed back into play."""
    campaign = store.get_campaign(commitment.campaign_id, for_update=True)
    store.clear_cancel_request(commitment.id)
    # Completion may have been held back by this commitment
    if campaign.status == CampaignStatus.STARTED:
        _complete_if_filled(campaign, timezone.now())


def _issue_refund(commitment: Commitment, reason: str) -> RefundResult:
    reference = commitment.payment_reference or commitment.payment_session_id
    if not reference:
        raise RefundFailedError('No payment reference recorded for this commitment.')

    try:
        result = get_payment_gateway().refund(
            payment_reference=reference,
            amount=commitment.amount,
            reason=reason or 'Cancelled by customer',
            idempotency_key=f'cancel-{commitment.id}',
        )
    except PaymentGatewayError as exc:
        logger.error("Refund for commitment %s failed: %s", commitment.id, exc)
        raise RefundFailedError() from exc

    if not result.succeeded:
        logger.error("Refund for commitment %s was %s", commitment.id, result.status)
        raise RefundFailedError(f'Refund was {result.status}.')
    return result


@store.retry_on_contention(InvalidStateError, CONTENDED_STATE)
@transaction.atomic
def _finalize_cancellation(commitment, refund, reason):
    now = timezone.now()
    store.get_campaign(commitment.campaign_id, for_update=True)

    fields = {
        'cancellation_reason': reason or 'Cancelled by customer',
        'cancelled_at': now,
    }
    expected = [commitment.status]
    if refund is not None:
        fields['refund_id'] = refund.refund_id
        fields['refund_status'] = refund.status
        # The sweeper may have ended the campaign while the refund was out
        expected.append(CommitmentStatus.ENDED_WITHOUT_PURCHASE)

    if not store.update_commitment_status(
        commitment.id,
        CommitmentStatus.CANCELLED,
        expected=expected,
        **fields,
    ):
        if refund is not None:
            logger.error(
                "Commitment %s changed state after refund %s was issued",
                commitment.id, refund.refund_id
            )
        raise InvalidStateError('Commitment changed state while being cancelled.')

    return store.cancel_campaign_if_empty(commitment.campaign_id, now)


# Queries

def get_campaign_summary(
    *,
    campaign_id: Optional[UUID] = None,
    campaign: Optional[Campaign] = None,
    distance_km: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Campaign with its fill level.

    Returns:
        Dict with campaign, committed_quantity, remaining_quantity,
        participants and distance_km
    """
    if campaign is None:
        campaign = store.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError()

    committed = store.sum_committed_quantity(campaign.id, PAID_COMMITMENT_STATUSES)
    reserved = store.sum_reserved_quantity(campaign.id)
    participants = (
        campaign.commitments
        .filter(status__in=PAID_COMMITMENT_STATUSES)
        .values('customer')
        .distinct()
        .count()
    )
    return {
        'campaign': campaign,
        'committed_quantity': committed,
        'remaining_quantity': max(0, campaign.target_quantity - reserved),
        'participants': participants,
        'distance_km': distance_km,
    }


def list_nearby_campaigns(
    *,
    product_id: UUID,
    location: Sequence[float],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Live campaigns for the product within the radius, nearest first."""
    product = _require_product(product_id)
    if not geo.is_valid_location(location):
        raise InvalidInputError('Location must be [longitude, latitude].')

    sweep(now, product_id=product.id)

    radius = geo.exclusion_radius_km()
    summaries = []
    for campaign in store.find_active_campaigns_for_product(product.id):
        distance = geo.distance_km(location, campaign.anchor_location)
        if distance <= radius:
            summaries.append(get_campaign_summary(campaign=campaign, distance_km=distance))

    summaries.sort(key=lambda summary: summary['distance_km'])
    return summaries


def list_customer_commitments(*, customer: User, status: Optional[str] = None) -> QuerySet:
    queryset = (
        Commitment.objects
        .filter(customer=customer)
        .select_related('campaign', 'product')
        .order_by('-created_at')
    )
    if status:
        queryset = queryset.filter(status=status)
    return queryset
