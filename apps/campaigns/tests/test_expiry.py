"""
Tests for the expiry sweeper and the sweep management command.
"""

import pytest
from datetime import timedelta
from io import StringIO
from unittest.mock import patch
from django.core.management import call_command
from django.utils import timezone

from apps.campaigns.models import Campaign, CampaignStatus, Commitment, CommitmentStatus
from apps.campaigns.services import (
    start_campaign,
    join_campaign,
    confirm_join_payment,
    sweep,
    sweep_expired,
    release_stale_payments,
)
from apps.campaigns.services import expiry
from .fakes import NEXT_DOOR, make_customer


def expire(campaign, days=1):
    Campaign.objects.filter(id=campaign.id).update(end_date=timezone.now() - timedelta(days=days))


@pytest.fixture
def busy_campaign(started_campaign, product):
    """Started campaign with 3 Pending and 1 WaitingPayment commitment."""
    for index in range(2):
        customer = make_customer(f'paid{index}@example.com', NEXT_DOOR)
        checkout = join_campaign(
            campaign_id=started_campaign.id,
            product_id=product.id,
            customer=customer,
            quantity=1,
        )
        confirm_join_payment(
            campaign_id=started_campaign.id,
            customer_id=customer.id,
            commitment_id=checkout.commitment.id,
        )
    waiting = make_customer('waiting@example.com', NEXT_DOOR)
    join_campaign(campaign_id=started_campaign.id, product_id=product.id, customer=waiting, quantity=1)
    return started_campaign


@pytest.mark.django_db
class TestSweepExpired:

    def test_ends_overdue_campaign_and_its_commitments(self, busy_campaign):
        assert busy_campaign.commitments.filter(status=CommitmentStatus.PENDING).count() == 3
        expire(busy_campaign)

        assert sweep_expired() == 1

        campaign = Campaign.objects.get(id=busy_campaign.id)
        assert campaign.status == CampaignStatus.ENDED_WITHOUT_PURCHASE
        statuses = list(campaign.commitments.values_list('status', flat=True))
        assert statuses == [CommitmentStatus.ENDED_WITHOUT_PURCHASE] * 4

    def test_second_sweep_is_noop(self, busy_campaign):
        expire(busy_campaign)
        sweep_expired()

        assert sweep_expired() == 0

    def test_unpaid_campaign_expires_too(self, product, alice):
        checkout = start_campaign(product_id=product.id, customer=alice, quantity=2)
        expire(checkout.campaign)

        assert sweep_expired() == 1
        assert Campaign.objects.get(id=checkout.campaign.id).status == CampaignStatus.ENDED_WITHOUT_PURCHASE

    def test_campaigns_within_window_are_untouched(self, started_campaign):
        assert sweep_expired() == 0
        assert Campaign.objects.get(id=started_campaign.id).status == CampaignStatus.STARTED

    def test_explicit_reference_time(self, started_campaign):
        later = timezone.now() + timedelta(days=15)

        assert sweep_expired(later) == 1

    def test_scoped_to_product(self, started_campaign, other_product):
        expire(started_campaign)

        assert sweep_expired(product_id=other_product.id) == 0
        assert sweep_expired(product_id=started_campaign.product_id) == 1

    def test_failure_on_one_campaign_does_not_stop_the_batch(self, started_campaign, product, dave):
        other = start_campaign(product_id=product.id, customer=dave, quantity=1)
        expire(started_campaign, days=2)
        expire(other.campaign, days=1)

        original = expiry._expire_campaign

        def flaky_expire(campaign_id, now):
            if campaign_id == started_campaign.id:
                raise RuntimeError('database hiccup')
            return original(campaign_id, now)

        with patch.object(expiry, '_expire_campaign', side_effect=flaky_expire):
            assert sweep_expired() == 1

        assert Campaign.objects.get(id=started_campaign.id).status == CampaignStatus.STARTED
        assert Campaign.objects.get(id=other.campaign.id).status == CampaignStatus.ENDED_WITHOUT_PURCHASE


@pytest.mark.django_db
class TestReleaseStalePayments:

    def test_releases_lapsed_commitment(self, started_campaign, product, bob):
        checkout = join_campaign(campaign_id=started_campaign.id, product_id=product.id, customer=bob, quantity=2)
        Commitment.objects.filter(id=checkout.commitment.id).update(
            created_at=timezone.now() - timedelta(minutes=45)
        )

        assert release_stale_payments() == 1

        commitment = Commitment.objects.get(id=checkout.commitment.id)
        assert commitment.status == CommitmentStatus.CANCELLED
        assert commitment.cancellation_reason == 'Payment timeout'
        assert Campaign.objects.get(id=started_campaign.id).status == CampaignStatus.STARTED
        assert release_stale_payments() == 0

    def test_fresh_commitment_is_kept(self, started_campaign, product, bob):
        join_campaign(campaign_id=started_campaign.id, product_id=product.id, customer=bob, quantity=2)

        assert release_stale_payments() == 0

    def test_unpaid_start_is_abandoned(self, product, alice, bob):
        checkout = start_campaign(product_id=product.id, customer=alice, quantity=2)
        Commitment.objects.filter(id=checkout.commitment.id).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        assert release_stale_payments() == 1
        assert Campaign.objects.get(id=checkout.campaign.id).status == CampaignStatus.CANCELLED

        # Area is free again
        start_campaign(product_id=product.id, customer=bob, quantity=1)

    def test_sweep_reports_both(self, started_campaign, product, bob, dave):
        other = start_campaign(product_id=product.id, customer=dave, quantity=1)
        join_campaign(campaign_id=started_campaign.id, product_id=product.id, customer=bob, quantity=2)
        Commitment.objects.filter(customer=bob).update(created_at=timezone.now() - timedelta(hours=1))
        expire(other.campaign)

        report = sweep()

        assert report.expired_campaigns == 1
        assert report.released_commitments == 1


@pytest.mark.django_db
class TestSweepCommand:

    def test_command_sweeps(self, started_campaign):
        expire(started_campaign)
        out = StringIO()

        call_command('sweep_expired_campaigns', stdout=out)

        assert 'Ended 1 campaign(s)' in out.getvalue()
        assert Campaign.objects.get(id=started_campaign.id).status == CampaignStatus.ENDED_WITHOUT_PURCHASE

    def test_command_dry_run(self, started_campaign):
        expire(started_campaign)
        out = StringIO()

        call_command('sweep_expired_campaigns', '--dry-run', stdout=out)

        assert 'Found 1 overdue campaign(s)' in out.getvalue()
        assert 'dry-run' in out.getvalue()
        assert Campaign.objects.get(id=started_campaign.id).status == CampaignStatus.STARTED

    def test_command_nothing_to_do(self, db):
        out = StringIO()

        call_command('sweep_expired_campaigns', stdout=out)

        assert 'Nothing to sweep' in out.getvalue()
