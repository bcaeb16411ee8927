"""
In-memory payment gateway and shared locations for tests.

State lives on the class because the engine instantiates the gateway per
call from the CAMPAIGN_PAYMENT_GATEWAY setting.
"""

import json
import threading
from uuid import uuid4

from apps.accounts.models import User
from apps.campaigns.services.payments import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentSession,
    RefundResult,
)

# Cairo downtown and neighbours, [longitude, latitude]
DOWNTOWN = [31.2357, 30.0444]
NEXT_DOOR = [31.2360, 30.0450]      # ~70 m away
ACROSS_TOWN = [31.2400, 30.0500]    # ~0.75 km away
ALEXANDRIA = [29.9187, 31.2001]     # ~180 km away


class FakePaymentGateway(PaymentGateway):
    sessions = {}
    refunds = []
    fail_sessions = False
    fail_refunds = False
    refund_status = 'succeeded'
    payment_status = 'paid'
    _lock = threading.Lock()

    @classmethod
    def reset(cls):
        cls.sessions = {}
        cls.refunds = []
        cls.fail_sessions = False
        cls.fail_refunds = False
        cls.refund_status = 'succeeded'
        cls.payment_status = 'paid'

    def create_payment_session(self, *, customer_email, amount, currency, success_url,
                               cancel_url, metadata, description=''):
        if self.fail_sessions:
            raise PaymentGatewayError('Gateway unavailable')
        session_id = f'cs_test_{uuid4().hex}'
        with self._lock:
            self.sessions[session_id] = {
                'customer_email': customer_email,
                'amount': amount,
                'currency': currency,
                'success_url': success_url,
                'cancel_url': cancel_url,
                'metadata': metadata,
            }
        return PaymentSession(session_id=session_id, session_url=f'https://checkout.test/{session_id}')

    def refund(self, *, payment_reference, amount=None, reason='', idempotency_key=None):
        if self.fail_refunds:
            raise PaymentGatewayError('Refund declined')
        with self._lock:
            for previous in self.refunds:
                if idempotency_key and previous['idempotency_key'] == idempotency_key:
                    return RefundResult(refund_id=previous['refund_id'], status=self.refund_status)
            refund_id = f're_test_{uuid4().hex[:12]}'
            self.refunds.append({
                'idempotency_key': idempotency_key,
                'refund_id': refund_id,
                'payment_reference': payment_reference,
                'amount': amount,
                'reason': reason,
            })
        return RefundResult(refund_id=refund_id, status=self.refund_status)

    def get_payment_status(self, payment_reference):
        return self.payment_status

    def parse_webhook_event(self, payload, signature):
        if signature != 'valid-signature':
            raise PaymentGatewayError('Signature mismatch')
        return json.loads(payload)


def make_customer(email, location, **extra):
    """Create a customer living at location, or with no home location if None."""
    longitude, latitude = location if location else (None, None)
    return User.objects.create_user(
        email=email,
        password='TestPass123!',
        first_name=email.split('@')[0].title(),
        city='Cairo',
        street='Tahrir Street',
        home_number='12',
        longitude=longitude,
        latitude=latitude,
        email_verified=True,
        **extra
    )
