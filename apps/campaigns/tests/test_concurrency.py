"""
Concurrency tests for the campaign engine.

Note: TransactionTestCase is required for testing actual database
transactions and concurrency. Regular TestCase wraps tests in
a transaction, which doesn't allow testing real concurrency.
"""

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import connection
from django.test import TransactionTestCase
from django.utils import timezone

from apps.campaigns.models import Campaign, CampaignStatus, Commitment, CommitmentStatus
from apps.campaigns.services import (
    start_campaign,
    confirm_start_payment,
    join_campaign,
    confirm_join_payment,
    cancel_commitment,
    sweep_expired,
)
from apps.campaigns.services.exceptions import (
    CapacityExceededError,
    InvalidStateError,
    ProximityConflictError,
)
from apps.products.models import Product
from .fakes import FakePaymentGateway, DOWNTOWN, NEXT_DOOR, make_customer


def run_concurrently(target, arguments):
    threads = [threading.Thread(target=target, args=(argument,)) for argument in arguments]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


class TestConcurrency(TransactionTestCase):

    def setUp(self):
        """Create a product with a bulk threshold of 10 and a started campaign of 6."""
        supplier = make_customer('supplier@test.com', None)
        self.product = Product.objects.create(
            name='Olive Oil 5L',
            description='Cold pressed',
            price=Decimal('25.00'),
            quantity=500,
            bulk_threshold=10,
            supplier=supplier,
            is_approved=True,
        )
        self.initiator = make_customer('initiator@test.com', DOWNTOWN)

    def _start_campaign(self, quantity=6):
        checkout = start_campaign(product_id=self.product.id, customer=self.initiator, quantity=quantity)
        confirm_start_payment(campaign_id=checkout.campaign.id, customer_id=self.initiator.id)
        return checkout.campaign

    def test_concurrent_joins_never_exceed_target(self):
        """
        Eight customers race for the 4 remaining units.

        Every join that reserved a unit must be able to pay for it, and the
        paid total must land exactly on the target.
        """
        campaign = self._start_campaign()
        customers = [make_customer(f'joiner{i}@test.com', NEXT_DOOR) for i in range(8)]

        paid = []
        rejected = []
        unexpected = []

        def join_and_pay(customer):
            try:
                checkout = join_campaign(
                    campaign_id=campaign.id,
                    product_id=self.product.id,
                    customer=customer,
                    quantity=1,
                )
                confirm_join_payment(
                    campaign_id=campaign.id,
                    customer_id=customer.id,
                    commitment_id=checkout.commitment.id,
                )
                paid.append(customer.id)
            except (CapacityExceededError, InvalidStateError) as e:
                rejected.append(e)
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                connection.close()

        run_concurrently(join_and_pay, customers)

        assert unexpected == []
        assert len(paid) == 4
        assert len(rejected) == 4

        campaign.refresh_from_db()
        assert campaign.status == CampaignStatus.COMPLETED
        completed = Commitment.objects.filter(campaign=campaign, status=CommitmentStatus.COMPLETED)
        assert sum(c.quantity for c in completed) == 10

    def test_concurrent_starts_create_one_campaign(self):
        """Neighbours starting at the same moment end up with a single campaign."""
        customers = [make_customer(f'starter{i}@test.com', NEXT_DOOR) for i in range(5)]

        started = []
        conflicts = []
        unexpected = []

        def start(customer):
            try:
                start_campaign(product_id=self.product.id, customer=customer, quantity=2)
                started.append(customer.id)
            except ProximityConflictError as e:
                conflicts.append(e)
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                connection.close()

        run_concurrently(start, customers)

        assert unexpected == []
        assert len(started) == 1
        assert len(conflicts) == 4
        assert Campaign.objects.filter(product=self.product).count() == 1

    def test_concurrent_cancels_refund_once(self):
        """Double-clicked cancel: one wins, the other sees a terminal commitment."""
        campaign = self._start_campaign()
        commitment = Commitment.objects.get(campaign=campaign, customer=self.initiator)

        cancelled = []
        rejected = []
        unexpected = []

        def cancel(_):
            try:
                cancel_commitment(commitment_id=commitment.id, customer=self.initiator)
                cancelled.append(True)
            except InvalidStateError as e:
                rejected.append(e)
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                connection.close()

        run_concurrently(cancel, range(2))

        assert unexpected == []
        assert len(cancelled) == 1
        assert len(rejected) == 1
        assert len({refund['refund_id'] for refund in FakePaymentGateway.refunds}) == 1
        assert Campaign.objects.get(id=campaign.id).status == CampaignStatus.CANCELLED

    def test_expiry_racing_a_filling_payment_agrees_on_one_outcome(self):
        """
        An overdue campaign is swept while its filling payment is confirmed.

        Either the payment completes the campaign and the sweep finds nothing
        to do, or the sweep ends it and the payment is refunded.
        """
        campaign = self._start_campaign()
        joiner = make_customer('joiner@test.com', NEXT_DOOR)
        checkout = join_campaign(
            campaign_id=campaign.id,
            product_id=self.product.id,
            customer=joiner,
            quantity=4,
        )
        Campaign.objects.filter(id=campaign.id).update(end_date=timezone.now() - timedelta(minutes=1))

        swept = []
        rejected = []
        unexpected = []

        def sweep():
            try:
                swept.append(sweep_expired())
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                connection.close()

        def confirm():
            try:
                confirm_join_payment(
                    campaign_id=campaign.id,
                    customer_id=joiner.id,
                    commitment_id=checkout.commitment.id,
                    payment_session_id=checkout.session_id,
                )
            except InvalidStateError as e:
                rejected.append(e)
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                connection.close()

        run_concurrently(lambda action: action(), [sweep, confirm])

        assert unexpected == []
        campaign.refresh_from_db()
        statuses = set(Commitment.objects.filter(campaign=campaign).values_list('status', flat=True))
        if campaign.status == CampaignStatus.COMPLETED:
            assert swept == [0]
            assert rejected == []
            assert statuses == {CommitmentStatus.COMPLETED}
            assert FakePaymentGateway.refunds == []
        else:
            assert campaign.status == CampaignStatus.ENDED_WITHOUT_PURCHASE
            assert swept == [1]
            assert len(rejected) == 1
            assert statuses == {CommitmentStatus.ENDED_WITHOUT_PURCHASE}
            assert len(FakePaymentGateway.refunds) == 1
            assert FakePaymentGateway.refunds[0]['payment_reference'] == checkout.session_id

    def test_completion_during_refund_excludes_cancelling_commitment(self):
        """
        A filling payment is confirmed while the initiator's refund is out.

        The refunded initiator must end Cancelled, never Completed, and the
        campaign stays open for the remaining units.
        """
        campaign = self._start_campaign()
        initiator_commitment = Commitment.objects.get(campaign=campaign, customer=self.initiator)
        joiner = make_customer('joiner@test.com', NEXT_DOOR)
        checkout = join_campaign(
            campaign_id=campaign.id,
            product_id=self.product.id,
            customer=joiner,
            quantity=4,
        )

        refund_started = threading.Event()
        filled = threading.Event()
        issue_refund = FakePaymentGateway.refund
        unexpected = []

        def refund_after_fill(gateway, **kwargs):
            refund_started.set()
            filled.wait(timeout=10)
            return issue_refund(gateway, **kwargs)

        def cancel():
            try:
                cancel_commitment(commitment_id=initiator_commitment.id, customer=self.initiator)
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                refund_started.set()
                connection.close()

        def fill():
            try:
                refund_started.wait(timeout=10)
                confirm_join_payment(
                    campaign_id=campaign.id,
                    customer_id=joiner.id,
                    commitment_id=checkout.commitment.id,
                    payment_session_id=checkout.session_id,
                )
            except Exception as e:
                unexpected.append(f"Unexpected error: {e!r}")
            finally:
                filled.set()
                connection.close()

        with patch.object(FakePaymentGateway, 'refund', refund_after_fill):
            run_concurrently(lambda action: action(), [cancel, fill])

        assert unexpected == []
        assert Commitment.objects.get(id=initiator_commitment.id).status == CommitmentStatus.CANCELLED
        assert Commitment.objects.get(id=checkout.commitment.id).status == CommitmentStatus.PENDING
        assert Campaign.objects.get(id=campaign.id).status == CampaignStatus.STARTED
        assert len(FakePaymentGateway.refunds) == 1
