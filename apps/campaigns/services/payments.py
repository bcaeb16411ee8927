"""
Payment gateway port.

The engine only talks to a PaymentGateway. StripePaymentGateway is the
production adapter; the active class is chosen by the
CAMPAIGN_PAYMENT_GATEWAY setting.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import stripe
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised by gateway adapters when the provider call fails."""
    pass


@dataclass
class PaymentSession:
    session_id: str
    session_url: str


@dataclass
class RefundResult:
    refund_id: str
    status: str

    # Provider statuses that mean the money is not coming back
    FAILED_STATUSES = ('failed', 'canceled')

    @property
    def succeeded(self) -> bool:
        return self.status not in self.FAILED_STATUSES


class PaymentGateway:
    """Interface every payment provider adapter implements."""

    def create_payment_session(
        self,
        *,
        customer_email: str,
        amount: Decimal,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        description: str = '',
    ) -> PaymentSession:
        raise NotImplementedError

    def refund(
        self,
        *,
        payment_reference: str,
        amount: Optional[Decimal] = None,
        reason: str = '',
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """Repeated calls with the same idempotency_key return the first refund."""
        raise NotImplementedError

    def get_payment_status(self, payment_reference: str) -> str:
        """Return 'paid' once the provider has captured the payment."""
        raise NotImplementedError

    def parse_webhook_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        raise NotImplementedError


def to_minor_units(amount: Decimal) -> int:
    """Convert 25.50 to 2550."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


# Stripe only accepts Checkout expiries between 30 minutes and 24 hours out
MIN_SESSION_MINUTES = 31
MAX_SESSION_MINUTES = 24 * 60


def session_expires_at(now: Optional[float] = None) -> int:
    """
    Unix time at which a Checkout session stops accepting payment.

    Never earlier than the payment timeout, so a customer cannot pay for
    a reservation the sweeper has not released yet and be turned away.
    """
    minutes = getattr(settings, 'CAMPAIGN_PAYMENT_TIMEOUT_MINUTES', 30)
    minutes = min(max(minutes, MIN_SESSION_MINUTES), MAX_SESSION_MINUTES)
    return int((now if now is not None else time.time()) + minutes * 60)


class StripePaymentGateway(PaymentGateway):
    """Stripe Checkout sessions and refunds."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def create_payment_session(
        self,
        *,
        customer_email,
        amount,
        currency,
        success_url,
        cancel_url,
        metadata,
        description='',
    ):
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode='payment',
                payment_method_types=['card'],
                customer_email=customer_email,
                line_items=[{
                    'price_data': {
                        'currency': currency,
                        'product_data': {'name': description or 'Bulk purchase'},
                        'unit_amount': to_minor_units(amount),
                    },
                    'quantity': 1,
                }],
                metadata=metadata,
                success_url=success_url,
                cancel_url=cancel_url,
                expires_at=session_expires_at(),
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session creation failed: %s", exc)
            raise PaymentGatewayError(str(exc)) from exc

        return PaymentSession(session_id=session.id, session_url=session.url)

    def _payment_intent_for(self, payment_reference: str) -> str:
        # Checkout session ids are stored as references; refunds need the intent
        if payment_reference.startswith('cs_'):
            session = stripe.checkout.Session.retrieve(payment_reference, api_key=self.api_key)
            return session.payment_intent
        return payment_reference

    def refund(self, *, payment_reference, amount=None, reason='', idempotency_key=None):
        try:
            params = {
                'payment_intent': self._payment_intent_for(payment_reference),
                'reason': 'requested_by_customer',
                'api_key': self.api_key,
            }
            if amount is not None:
                params['amount'] = to_minor_units(amount)
            if reason:
                params['metadata'] = {'reason': reason[:500]}
            if idempotency_key:
                params['idempotency_key'] = idempotency_key
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as exc:
            logger.error("Stripe refund for %s failed: %s", payment_reference, exc)
            raise PaymentGatewayError(str(exc)) from exc

        return RefundResult(refund_id=refund.id, status=refund.status)

    def get_payment_status(self, payment_reference):
        try:
            if payment_reference.startswith('cs_'):
                session = stripe.checkout.Session.retrieve(payment_reference, api_key=self.api_key)
                return session.payment_status
            intent = stripe.PaymentIntent.retrieve(payment_reference, api_key=self.api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe status lookup for %s failed: %s", payment_reference, exc)
            raise PaymentGatewayError(str(exc)) from exc
        return 'paid' if intent.status == 'succeeded' else intent.status

    def parse_webhook_event(self, payload, signature):
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise PaymentGatewayError(f"Invalid webhook: {exc}") from exc


def get_payment_gateway() -> PaymentGateway:
    return import_string(settings.CAMPAIGN_PAYMENT_GATEWAY)()
