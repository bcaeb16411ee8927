"""
Customer notifications.

Notifications are fire-and-forget: a delivery failure is logged and never
propagates into the engine operation that triggered it.
"""

import logging
from uuid import UUID

from django.conf import settings
from django.core.mail import send_mail
from django.template.loader import render_to_string
from django.utils.module_loading import import_string

from apps.campaigns.models import Commitment

logger = logging.getLogger(__name__)


class Notifier:
    def send_invoice(self, *, customer_id: UUID, campaign_id: UUID, commitment_id: UUID) -> None:
        raise NotImplementedError

    def send_cancellation(self, *, customer_id: UUID, commitment_id: UUID, refund_status: str) -> None:
        raise NotImplementedError


class EmailNotifier(Notifier):
    """Plain text plus HTML emails rendered from campaigns/email templates."""

    def _send(self, template: str, subject: str, recipient: str, context: dict) -> None:
        text_body = render_to_string(f'campaigns/email/{template}.txt', context)
        html_body = render_to_string(f'campaigns/email/{template}.html', context)
        send_mail(
            subject,
            text_body,
            settings.DEFAULT_FROM_EMAIL,
            [recipient],
            html_message=html_body,
            fail_silently=False,
        )

    def _load(self, commitment_id, customer_id):
        return (
            Commitment.objects
            .select_related('customer', 'product', 'campaign')
            .get(id=commitment_id, customer_id=customer_id)
        )

    def send_invoice(self, *, customer_id, campaign_id, commitment_id):
        try:
            commitment = self._load(commitment_id, customer_id)
            context = {
                'customer': commitment.customer,
                'campaign': commitment.campaign,
                'commitment': commitment,
                'product': commitment.product,
                'currency': settings.CAMPAIGN_CURRENCY.upper(),
            }
            self._send(
                'invoice',
                f'Your order for {commitment.product.name}',
                commitment.customer.email,
                context,
            )
            logger.info("Invoice sent for commitment %s", commitment_id)
        except Exception:
            logger.exception(
                "Failed to send invoice for commitment %s (campaign %s)",
                commitment_id, campaign_id
            )

    def send_cancellation(self, *, customer_id, commitment_id, refund_status):
        try:
            commitment = self._load(commitment_id, customer_id)
            context = {
                'customer': commitment.customer,
                'commitment': commitment,
                'product': commitment.product,
                'refund_status': refund_status,
                'currency': settings.CAMPAIGN_CURRENCY.upper(),
            }
            self._send(
                'cancellation',
                f'Your order for {commitment.product.name} was cancelled',
                commitment.customer.email,
                context,
            )
            logger.info("Cancellation notice sent for commitment %s", commitment_id)
        except Exception:
            logger.exception("Failed to send cancellation for commitment %s", commitment_id)


def get_notifier() -> Notifier:
    return import_string(settings.CAMPAIGN_NOTIFIER)()
