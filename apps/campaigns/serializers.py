from rest_framework import serializers
from .models import Campaign, Commitment, CommitmentStatus, PaymentMethod


# =============================================================================
# Input Serializers
# =============================================================================

class LocationInputSerializer(serializers.Serializer):
    """Optional longitude/latitude pair; both or neither."""

    longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)
    latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)

    def validate(self, attrs):
        has_longitude = 'longitude' in attrs
        has_latitude = 'latitude' in attrs
        if has_longitude != has_latitude:
            raise serializers.ValidationError(
                'Provide both longitude and latitude, or neither.'
            )
        if has_longitude:
            attrs['location'] = [attrs.pop('longitude'), attrs.pop('latitude')]
        else:
            attrs['location'] = None
        return attrs


class StartCampaignInputSerializer(LocationInputSerializer):
    """
    Validate input for starting a campaign.

    Fields:
        product (UUID): Product to buy in bulk
        quantity (int): Units the initiator commits to
        payment_method (str): Payment method, defaults to credit card
        longitude, latitude (float): Optional, defaults to the user's home
    """

    product = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        default=PaymentMethod.CREDIT_CARD
    )


class JoinCampaignInputSerializer(StartCampaignInputSerializer):
    """Same fields as a start; the campaign comes from the URL."""
    pass


class CancelCommitmentInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class NearbyCampaignsQuerySerializer(LocationInputSerializer):
    product = serializers.UUIDField()


class CommitmentFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=CommitmentStatus.choices, required=False)


# =============================================================================
# Output Serializers
# =============================================================================

class CampaignSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    anchor_location = serializers.ListField(child=serializers.FloatField(), read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Campaign
        fields = [
            'id',
            'product',
            'product_name',
            'anchor_location',
            'target_quantity',
            'start_date',
            'end_date',
            'status',
            'status_display',
            'completed_at',
            'cancelled_at',
        ]
        read_only_fields = fields


class CampaignSummarySerializer(serializers.Serializer):
    campaign = CampaignSerializer()
    committed_quantity = serializers.IntegerField()
    remaining_quantity = serializers.IntegerField()
    participants = serializers.IntegerField()
    distance_km = serializers.FloatField(allow_null=True)


class CommitmentSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    campaign_status = serializers.CharField(source='campaign.status', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Commitment
        fields = [
            'id',
            'campaign',
            'campaign_status',
            'product',
            'product_name',
            'quantity',
            'amount',
            'status',
            'status_display',
            'payment_method',
            'is_initiator',
            'paid_at',
            'refund_status',
            'cancellation_reason',
            'cancelled_at',
            'created_at',
        ]
        read_only_fields = fields


class CheckoutResponseSerializer(serializers.Serializer):
    message = serializers.CharField()
    url = serializers.URLField()
    campaign_id = serializers.UUIDField()
    commitment_id = serializers.UUIDField()
    product_name = serializers.CharField()


class ConfirmationResponseSerializer(serializers.Serializer):
    message = serializers.CharField()
    commitment = CommitmentSerializer()
    campaign_status = serializers.CharField()


class CancellationResponseSerializer(serializers.Serializer):
    message = serializers.CharField()
    refund_status = serializers.CharField()
    campaign_cancelled = serializers.BooleanField()
    commitment = CommitmentSerializer()
