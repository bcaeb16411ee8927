"""
Tests for customer email notifications.
"""

import pytest
from unittest.mock import patch
from django.core import mail

from apps.campaigns.services import start_campaign, confirm_start_payment
from apps.campaigns.services.notifications import EmailNotifier, get_notifier


@pytest.fixture
def paid_commitment(product, alice):
    checkout = start_campaign(product_id=product.id, customer=alice, quantity=4)
    confirm_start_payment(campaign_id=checkout.campaign.id, customer_id=alice.id)
    mail.outbox.clear()
    checkout.commitment.refresh_from_db()
    return checkout.commitment


@pytest.mark.django_db
class TestEmailNotifier:

    def test_invoice_contents(self, paid_commitment, alice):
        EmailNotifier().send_invoice(
            customer_id=alice.id,
            campaign_id=paid_commitment.campaign_id,
            commitment_id=paid_commitment.id,
        )

        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == ['alice@example.com']
        assert message.subject == 'Your order for Olive Oil 5L'
        assert '100.00 EGP' in message.body
        assert 'Tahrir Street, Cairo' in message.body
        html, mimetype = message.alternatives[0]
        assert mimetype == 'text/html'
        assert 'Olive Oil 5L' in html

    def test_cancellation_contents(self, paid_commitment, alice):
        EmailNotifier().send_cancellation(
            customer_id=alice.id,
            commitment_id=paid_commitment.id,
            refund_status='Refund succeeded',
        )

        assert len(mail.outbox) == 1
        assert 'was cancelled' in mail.outbox[0].subject
        assert 'Refund: Refund succeeded' in mail.outbox[0].body

    def test_delivery_failure_is_logged_not_raised(self, paid_commitment, alice, caplog):
        with patch('apps.campaigns.services.notifications.send_mail', side_effect=OSError('SMTP down')):
            EmailNotifier().send_invoice(
                customer_id=alice.id,
                campaign_id=paid_commitment.campaign_id,
                commitment_id=paid_commitment.id,
            )

        assert len(mail.outbox) == 0
        assert 'Failed to send invoice' in caplog.text

    def test_wrong_customer_is_logged_not_raised(self, paid_commitment, bob, caplog):
        EmailNotifier().send_cancellation(
            customer_id=bob.id,
            commitment_id=paid_commitment.id,
            refund_status='Refund succeeded',
        )

        assert len(mail.outbox) == 0
        assert 'Failed to send cancellation' in caplog.text

    def test_engine_survives_notifier_failure(self, product, alice):
        checkout = start_campaign(product_id=product.id, customer=alice, quantity=4)

        with patch('apps.campaigns.services.notifications.send_mail', side_effect=OSError('SMTP down')):
            confirmation = confirm_start_payment(campaign_id=checkout.campaign.id, customer_id=alice.id)

        assert confirmation.campaign_status == 'started'

    def test_configured_notifier(self):
        assert isinstance(get_notifier(), EmailNotifier)
