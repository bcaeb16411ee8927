from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import uuid


class CampaignStatus(models.TextChoices):
    WAITING_PAYMENT = 'waiting_payment', 'Waiting Payment'
    STARTED = 'started', 'Started'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    ENDED_WITHOUT_PURCHASE = 'ended_without_purchase', 'Ended without purchase'


class CommitmentStatus(models.TextChoices):
    WAITING_PAYMENT = 'waiting_payment', 'Waiting payment'
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    ENDED_WITHOUT_PURCHASE = 'ended_without_purchase', 'Ended without purchase'


class PaymentMethod(models.TextChoices):
    CREDIT_CARD = 'credit_card', 'Credit Card'
    CASH = 'cash', 'Cash'
    PAYPAL = 'paypal', 'Paypal'


# Campaigns in these states still accept commitments and block nearby starts
LIVE_CAMPAIGN_STATUSES = (CampaignStatus.WAITING_PAYMENT, CampaignStatus.STARTED)
TERMINAL_CAMPAIGN_STATUSES = (
    CampaignStatus.COMPLETED,
    CampaignStatus.CANCELLED,
    CampaignStatus.ENDED_WITHOUT_PURCHASE,
)

# Commitments that are paid and count toward the target quantity
PAID_COMMITMENT_STATUSES = (CommitmentStatus.PENDING, CommitmentStatus.COMPLETED)
LIVE_COMMITMENT_STATUSES = (CommitmentStatus.WAITING_PAYMENT, CommitmentStatus.PENDING)
TERMINAL_COMMITMENT_STATUSES = (
    CommitmentStatus.COMPLETED,
    CommitmentStatus.CANCELLED,
    CommitmentStatus.ENDED_WITHOUT_PURCHASE,
)


class Campaign(models.Model):
    """Time-boxed bulk purchase of one product, anchored at one location."""
    
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.CASCADE,
        related_name='campaigns'
    )
    
    # Location of the initiating commitment, immutable
    anchor_longitude = models.FloatField()
    anchor_latitude = models.FloatField()
    
    # Copied from product.bulk_threshold at creation
    target_quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    
    status = models.CharField(
        max_length=30,
        choices=CampaignStatus.choices,
        default=CampaignStatus.WAITING_PAYMENT
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    
    class Meta:
        db_table = 'campaigns'
        indexes = [
            models.Index(fields=['product', 'status']),
            models.Index(fields=['status', 'end_date']),
        ]
        ordering = ['-start_date']
    
    def __str__(self):
        return f"{self.product.name} x{self.target_quantity} ({self.get_status_display()})"
    
    @property
    def anchor_location(self):
        return [self.anchor_longitude, self.anchor_latitude]
    
    @property
    def is_live(self):
        return self.status in LIVE_CAMPAIGN_STATUSES


class Commitment(models.Model):
    """One customer's pledge of quantity toward a campaign."""
    
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    
    campaign = models.ForeignKey(
        Campaign,
        on_delete=models.CASCADE,
        related_name='commitments'
    )
    customer = models.ForeignKey(
        'accounts.User',
        on_delete=models.CASCADE,
        related_name='commitments'
    )
    # Denormalized from campaign for per-product queries
    product = models.ForeignKey(
        'products.Product',
        on_delete=models.CASCADE,
        related_name='commitments'
    )
    
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    # quantity x product price at commitment time
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    
    status = models.CharField(
        max_length=30,
        choices=CommitmentStatus.choices,
        default=CommitmentStatus.WAITING_PAYMENT
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CREDIT_CARD
    )
    # The commitment that opened the campaign
    is_initiator = models.BooleanField(default=False)
    
    # Opaque payment provider references
    payment_session_id = models.CharField(max_length=255, blank=True)
    payment_reference = models.CharField(max_length=255, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    
    # Refund tracking
    refund_id = models.CharField(max_length=255, blank=True)
    refund_status = models.CharField(max_length=30, blank=True)
    
    # Cancellation
    cancellation_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    # Set while a refund for a paid commitment is in flight
    cancel_requested_at = models.DateTimeField(null=True, blank=True)
    
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    
    class Meta:
        db_table = 'commitments'
        indexes = [
            models.Index(fields=['campaign', 'status']),
            models.Index(fields=['customer', 'status']),
            models.Index(fields=['status', 'created_at']),
        ]
        ordering = ['created_at']
    
    def __str__(self):
        return f"{self.customer} commits {self.quantity} ({self.get_status_display()})"
    
    @property
    def is_paid(self):
        return self.status in PAID_COMMITMENT_STATUSES
    
    @property
    def is_being_cancelled(self):
        return self.cancel_requested_at is not None
