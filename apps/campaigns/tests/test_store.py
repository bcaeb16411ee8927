"""
Tests for store lookups and the cancellation flag.
"""

import pytest
from django.db import transaction
from django.utils import timezone

from apps.campaigns.models import CommitmentStatus
from apps.campaigns.services import store, join_campaign


@pytest.mark.django_db
class TestLockedLookups:

    def test_locked_campaign_carries_product(self, started_campaign, django_assert_num_queries):
        with transaction.atomic():
            with django_assert_num_queries(1):
                campaign = store.get_campaign(started_campaign.id, for_update=True)
                assert campaign.product.name == 'Olive Oil 5L'

    def test_locked_commitment_carries_relations(self, started_campaign, alice, django_assert_num_queries):
        initiator = started_campaign.commitments.get(customer=alice)

        with transaction.atomic():
            with django_assert_num_queries(1):
                commitment = store.get_commitment(initiator.id, for_update=True)
                assert commitment.campaign.id == started_campaign.id
                assert commitment.product.name == 'Olive Oil 5L'
                assert commitment.customer.email == 'alice@example.com'


@pytest.mark.django_db
class TestCancellationFlag:

    def test_flagged_commitment_leaves_completion_totals(self, started_campaign, alice):
        initiator = started_campaign.commitments.get(customer=alice)

        assert store.mark_cancel_requested(initiator.id, timezone.now()) is True

        assert store.sum_committed_quantity(started_campaign.id) == 6
        assert store.sum_committed_quantity(started_campaign.id, include_cancelling=False) == 0

    def test_flag_is_set_once(self, started_campaign, alice):
        initiator = started_campaign.commitments.get(customer=alice)
        store.mark_cancel_requested(initiator.id, timezone.now())

        assert store.mark_cancel_requested(initiator.id, timezone.now()) is False

        store.clear_cancel_request(initiator.id)
        initiator.refresh_from_db()
        assert initiator.is_being_cancelled is False
        assert store.mark_cancel_requested(initiator.id, timezone.now()) is True

    def test_unpaid_commitment_cannot_be_flagged(self, started_campaign, product, bob):
        checkout = join_campaign(campaign_id=started_campaign.id, product_id=product.id, customer=bob, quantity=2)

        assert checkout.commitment.status == CommitmentStatus.WAITING_PAYMENT
        assert store.mark_cancel_requested(checkout.commitment.id, timezone.now()) is False

    def test_bulk_update_skips_flagged_commitment(self, started_campaign, alice):
        initiator = started_campaign.commitments.get(customer=alice)
        store.mark_cancel_requested(initiator.id, timezone.now())

        updated = store.update_campaign_commitments(
            started_campaign.id,
            CommitmentStatus.COMPLETED,
            expected=[CommitmentStatus.PENDING],
            include_cancelling=False,
        )

        assert updated == 0
        initiator.refresh_from_db()
        assert initiator.status == CommitmentStatus.PENDING
